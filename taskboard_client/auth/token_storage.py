"""
Secure Token Storage for the Task Board client.

This module keeps the current access/refresh token pair, persisting it in the
system keyring or, when no keyring is usable, in an encrypted file.
"""

import os
import json
import logging
from datetime import datetime
from typing import Optional, Dict, Any
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

from taskboard_shared.exceptions import TokenStorageError, ErrorCode
from taskboard_shared.interfaces import ITokenStore
from taskboard_shared.logging_config import log_structured_error
from taskboard_shared.models import TokenPair

logger = logging.getLogger(__name__)


TOKEN_PAIR_KEY = "token_pair"


class SecureTokenStorage(ITokenStore):
    """
    Durable holder of the current token pair.

    The pair is always written and removed as one record (a single keyring
    entry, or one encrypted file replaced atomically), and the in-memory copy
    is swapped in a single assignment, so no reader can observe a pair where
    only one of the tokens was updated.
    """

    def __init__(
        self,
        service_name: str = "taskboard-client",
        backend: str = "auto",
        storage_path: Optional[str] = None
    ):
        self.service_name = service_name
        self.keyring_available = backend != "file" and self._check_keyring_availability()
        if backend == "keyring" and not self.keyring_available:
            logger.warning("Keyring backend requested but unavailable, using encrypted file")

        self.storage_path = Path(storage_path).expanduser() if storage_path else self._get_storage_path()

        self._encryption_key: Optional[bytes] = None
        self._pair: Optional[TokenPair] = None
        self._loaded = False

        logger.info(f"Token storage initialized (keyring: {self.keyring_available})")

    def _check_keyring_availability(self) -> bool:
        """Check if system keyring is available."""
        try:
            import keyring
            test_key = f"{self.service_name}_test"
            keyring.set_password(self.service_name, test_key, "test")
            result = keyring.get_password(self.service_name, test_key)
            keyring.delete_password(self.service_name, test_key)
            return result == "test"
        except Exception as e:
            logger.debug(f"Keyring not available: {e}")
            return False

    def _get_storage_path(self) -> Path:
        """Get path for encrypted file storage."""
        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        if xdg_config:
            config_dir = Path(xdg_config) / 'taskboard'
        else:
            config_dir = Path.home() / '.config' / 'taskboard'

        return config_dir / 'tokens.enc'

    @property
    def key_path(self) -> Path:
        return self.storage_path.with_suffix('.key')

    def _get_encryption_key(self) -> bytes:
        """Get or create encryption key for file storage."""
        if self._encryption_key:
            return self._encryption_key

        if self.key_path.exists():
            self._encryption_key = self.key_path.read_bytes().strip()
            return self._encryption_key

        key = Fernet.generate_key()
        self.key_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_private(self.key_path, key)

        self._encryption_key = key
        return key

    def _write_private(self, path: Path, data: bytes) -> None:
        """Write a file readable only by the owner, replacing it atomically."""
        tmp_path = path.with_name(path.name + '.tmp')
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
        os.replace(tmp_path, path)
        os.chmod(path, 0o600)

    def load(self) -> Optional[TokenPair]:
        """
        Get the current token pair.

        Returns:
            The stored pair, or None if absent or the storage is unreadable
        """
        if self._loaded:
            return self._pair

        record = None
        try:
            if self.keyring_available:
                record = self._read_keyring()
            else:
                record = self._read_file()
        except Exception as e:
            logger.warning(f"Token storage unavailable, treating as logged out: {e}")

        pair = None
        if record:
            try:
                pair = TokenPair.from_response(record)
            except ValueError as e:
                logger.warning(f"Discarding malformed stored token pair: {e}")

        self._pair = pair
        self._loaded = True
        return pair

    def save(self, pair: TokenPair) -> None:
        """
        Replace the stored token pair.

        The in-memory pair is always updated; a failure to persist it is
        logged and the session continues for the lifetime of the process.
        """
        self._pair = pair
        self._loaded = True

        record: Dict[str, Any] = dict(pair.to_dict(), stored_at=datetime.now().isoformat())
        try:
            self._persist(record)
            logger.debug("Token pair stored")
        except TokenStorageError as e:
            log_structured_error(logger, e, level=logging.WARNING)

    def clear(self) -> None:
        """Remove both tokens."""
        self._pair = None
        self._loaded = True

        try:
            if self.keyring_available:
                self._remove_keyring()
            elif self.storage_path.exists():
                self.storage_path.unlink()
            logger.debug("Token pair cleared")
        except Exception as e:
            logger.warning(f"Failed to remove stored tokens: {e}")

    def has_refresh_token(self) -> bool:
        pair = self.load()
        return pair is not None and bool(pair.refresh_token)

    def _persist(self, record: Dict[str, Any]) -> None:
        value = json.dumps(record)
        try:
            if self.keyring_available:
                import keyring
                keyring.set_password(self.service_name, TOKEN_PAIR_KEY, value)
            else:
                self.storage_path.parent.mkdir(parents=True, exist_ok=True)
                self._write_private(self.storage_path, self._encrypt_data(value))
        except Exception as e:
            raise TokenStorageError(
                f"Failed to store token pair: {e}",
                error_code=ErrorCode.STORAGE_WRITE_FAILED,
                cause=e
            )

    def _read_keyring(self) -> Optional[Dict[str, Any]]:
        import keyring

        value = keyring.get_password(self.service_name, TOKEN_PAIR_KEY)
        if value:
            return json.loads(value)
        return None

    def _remove_keyring(self) -> None:
        import keyring
        from keyring.errors import PasswordDeleteError

        try:
            keyring.delete_password(self.service_name, TOKEN_PAIR_KEY)
        except PasswordDeleteError:
            pass

    def _read_file(self) -> Optional[Dict[str, Any]]:
        if not self.storage_path.exists():
            return None

        try:
            decrypted = self._decrypt_data(self.storage_path.read_bytes())
        except InvalidToken:
            logger.warning("Stored tokens could not be decrypted")
            return None

        return json.loads(decrypted)

    def _encrypt_data(self, data: str) -> bytes:
        """Encrypt data for file storage."""
        return Fernet(self._get_encryption_key()).encrypt(data.encode())

    def _decrypt_data(self, encrypted_data: bytes) -> str:
        """Decrypt data from file storage."""
        return Fernet(self._get_encryption_key()).decrypt(encrypted_data).decode()


class MemoryTokenStorage(ITokenStore):
    """Process-local token store for hosts without durable storage."""

    def __init__(self, pair: Optional[TokenPair] = None):
        self._pair = pair

    def load(self) -> Optional[TokenPair]:
        return self._pair

    def save(self, pair: TokenPair) -> None:
        self._pair = pair

    def clear(self) -> None:
        self._pair = None
