"""
Tests for token storage backends.
"""

import json
import os
import stat

import pytest
from unittest.mock import patch
from keyring.errors import PasswordDeleteError

from taskboard_client.auth.token_storage import (
    MemoryTokenStorage, SecureTokenStorage, TOKEN_PAIR_KEY
)
from taskboard_shared.models import TokenPair


PAIR = TokenPair('access-token-one', 'refresh-token-one')


class TestFileTokenStorage:
    """Test the encrypted file backend."""

    @pytest.fixture
    def token_file(self, tmp_path):
        return tmp_path / 'tokens.enc'

    @pytest.fixture
    def storage(self, token_file):
        return SecureTokenStorage(backend='file', storage_path=str(token_file))

    def test_empty_storage(self, storage):
        assert storage.load() is None
        assert storage.has_refresh_token() is False

    def test_save_and_load(self, storage):
        storage.save(PAIR)

        assert storage.load() == PAIR
        assert storage.has_refresh_token() is True

    def test_pair_survives_restart(self, storage, token_file):
        """Test a new storage instance reads the pair written by another."""
        storage.save(PAIR)

        reopened = SecureTokenStorage(backend='file', storage_path=str(token_file))

        assert reopened.load() == PAIR

    def test_file_is_encrypted_and_private(self, storage, token_file):
        storage.save(PAIR)

        raw = token_file.read_bytes()
        assert b'access-token-one' not in raw
        assert b'refresh-token-one' not in raw
        assert stat.S_IMODE(os.stat(token_file).st_mode) == 0o600
        assert stat.S_IMODE(os.stat(storage.key_path).st_mode) == 0o600

    def test_save_replaces_both_tokens(self, storage, token_file):
        storage.save(PAIR)
        storage.save(TokenPair('access-token-two', 'refresh-token-two'))

        reopened = SecureTokenStorage(backend='file', storage_path=str(token_file))

        assert reopened.load() == TokenPair('access-token-two', 'refresh-token-two')

    def test_clear_removes_both_tokens(self, storage, token_file):
        storage.save(PAIR)

        storage.clear()

        assert storage.load() is None
        assert not token_file.exists()
        assert SecureTokenStorage(backend='file', storage_path=str(token_file)).load() is None

    def test_clear_when_empty(self, storage):
        storage.clear()
        assert storage.load() is None

    def test_corrupted_file_reads_as_logged_out(self, token_file):
        token_file.write_bytes(b'not a fernet token')

        storage = SecureTokenStorage(backend='file', storage_path=str(token_file))

        assert storage.load() is None

    def test_lost_key_reads_as_logged_out(self, storage, token_file):
        """Test tokens encrypted with a key that no longer exists are discarded."""
        storage.save(PAIR)
        storage.key_path.unlink()

        reopened = SecureTokenStorage(backend='file', storage_path=str(token_file))

        assert reopened.load() is None

    def test_incomplete_record_discarded(self, storage, token_file):
        """Test a stored record missing one token is not used."""
        token_file.write_bytes(storage._encrypt_data(json.dumps({'accessToken': 'only-access'})))

        reopened = SecureTokenStorage(backend='file', storage_path=str(token_file))

        assert reopened.load() is None

    def test_persist_failure_keeps_pair_in_memory(self, storage, token_file):
        """Test a write failure is logged and the session continues."""
        with patch.object(SecureTokenStorage, '_write_private', side_effect=OSError("disk full")):
            storage.save(PAIR)

        assert storage.load() == PAIR
        assert not token_file.exists()


class TestKeyringTokenStorage:
    """Test the keyring backend against an in-memory keyring."""

    @pytest.fixture
    def keyring_entries(self):
        entries = {}

        def set_password(service, key, value):
            entries[(service, key)] = value

        def get_password(service, key):
            return entries.get((service, key))

        def delete_password(service, key):
            if (service, key) not in entries:
                raise PasswordDeleteError(key)
            del entries[(service, key)]

        with patch('keyring.set_password', side_effect=set_password), \
             patch('keyring.get_password', side_effect=get_password), \
             patch('keyring.delete_password', side_effect=delete_password):
            yield entries

    def test_pair_stored_as_single_entry(self, keyring_entries, tmp_path):
        storage = SecureTokenStorage(service_name='taskboard-test', storage_path=str(tmp_path / 'tokens.enc'))
        assert storage.keyring_available is True

        storage.save(PAIR)

        assert list(keyring_entries) == [('taskboard-test', TOKEN_PAIR_KEY)]
        record = json.loads(keyring_entries[('taskboard-test', TOKEN_PAIR_KEY)])
        assert record['accessToken'] == 'access-token-one'
        assert record['refreshToken'] == 'refresh-token-one'
        assert not (tmp_path / 'tokens.enc').exists()

    def test_pair_survives_restart(self, keyring_entries):
        SecureTokenStorage(service_name='taskboard-test').save(PAIR)

        assert SecureTokenStorage(service_name='taskboard-test').load() == PAIR

    def test_clear_removes_entry(self, keyring_entries):
        storage = SecureTokenStorage(service_name='taskboard-test')
        storage.save(PAIR)

        storage.clear()
        storage.clear()

        assert keyring_entries == {}
        assert SecureTokenStorage(service_name='taskboard-test').load() is None

    def test_file_backend_ignores_keyring(self, keyring_entries, tmp_path):
        storage = SecureTokenStorage(backend='file', storage_path=str(tmp_path / 'tokens.enc'))

        storage.save(PAIR)

        assert storage.keyring_available is False
        assert keyring_entries == {}

    def test_unusable_keyring_falls_back_to_file(self, tmp_path):
        with patch('keyring.set_password', side_effect=RuntimeError("no backend")):
            storage = SecureTokenStorage(backend='keyring', storage_path=str(tmp_path / 'tokens.enc'))

        assert storage.keyring_available is False
        storage.save(PAIR)
        assert (tmp_path / 'tokens.enc').exists()


class TestMemoryTokenStorage:
    """Test the process-local store."""

    def test_save_load_clear(self):
        storage = MemoryTokenStorage()
        assert storage.load() is None

        storage.save(PAIR)
        assert storage.load() == PAIR

        storage.clear()
        assert storage.load() is None

    def test_initial_pair(self):
        assert MemoryTokenStorage(PAIR).load() == PAIR
