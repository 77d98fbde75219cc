"""
Tests for RequestGateway.

Integration tests run against the stub task service from conftest.py; the
unit tests at the bottom drive the gateway with a mocked transport.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from taskboard_client.auth.token_storage import MemoryTokenStorage
from taskboard_client.gateway import RequestGateway
from taskboard_client.transport import ApiResponse
from taskboard_shared.exceptions import (
    InvalidCredentials, InvalidRefreshToken, NoRefreshToken, RequestFailed, UserExists
)
from taskboard_shared.models import TokenPair


class TestRequestGatewayIntegration:
    """Test the gateway against the stub task service."""

    @pytest.mark.asyncio
    async def test_valid_token_sent_as_bearer(self, logged_in):
        """Test a request carries the stored access token and succeeds without refresh."""
        logged_in.service.add_task('user@example.com', title='Write report')

        response = await logged_in.gateway.send('GET', '/api/tasks')

        assert response.status == 200
        assert [task['title'] for task in response.data] == ['Write report']
        assert logged_in.service.calls_to('/api/tasks')[0].token == 'A1'
        assert logged_in.service.refresh_count == 0

    @pytest.mark.asyncio
    async def test_expired_access_token_refreshed_and_retried(self, logged_in):
        """Test A1 rejected, refresh with R1 gives A2/R2, retry with A2 succeeds."""
        logged_in.service.expire_access_tokens()

        response = await logged_in.gateway.send('GET', '/api/tasks')

        assert response.status == 200
        assert [call.token for call in logged_in.service.calls_to('/api/tasks')] == ['A1', 'A2']
        refresh_calls = logged_in.service.calls_to('/api/refresh')
        assert len(refresh_calls) == 1
        assert refresh_calls[0].body == {'refreshToken': 'R1'}
        assert logged_in.store.load() == TokenPair('A2', 'R2')

    @pytest.mark.asyncio
    async def test_forbidden_status_also_triggers_refresh(self, logged_in):
        """Test a 403 is treated like a 401."""
        logged_in.service.auth_failure_status = 403
        logged_in.service.expire_access_tokens()

        response = await logged_in.gateway.send('GET', '/api/tasks')

        assert response.ok
        assert logged_in.service.refresh_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_rejections_share_one_refresh(self, logged_in):
        """Test N concurrent 401s cause exactly one refresh and every request succeeds."""
        logged_in.service.refresh_delay = 0.05
        logged_in.service.expire_access_tokens()

        responses = await asyncio.gather(*[
            logged_in.gateway.send('GET', '/api/tasks') for _ in range(8)
        ])

        assert all(response.status == 200 for response in responses)
        assert logged_in.service.refresh_count == 1
        retried = [call for call in logged_in.service.calls_to('/api/tasks') if call.token == 'A2']
        assert len(retried) == 8

    @pytest.mark.asyncio
    async def test_rejected_retry_is_not_retried_again(self, logged_in):
        """Test a request is replayed at most once."""
        logged_in.service.reject_access_tokens = True

        with pytest.raises(RequestFailed) as exc_info:
            await logged_in.gateway.send('GET', '/api/tasks')

        assert exc_info.value.status == 401
        assert len(logged_in.service.calls_to('/api/tasks')) == 2
        assert logged_in.service.refresh_count == 1
        assert logged_in.store.load() == TokenPair('A2', 'R2')

    @pytest.mark.asyncio
    async def test_failed_refresh_ends_session(self, logged_in):
        """Test a rejected refresh token clears the store and signals session end."""
        logged_in.service.expire_access_tokens()
        logged_in.service.revoke_refresh_tokens()

        with pytest.raises(InvalidRefreshToken):
            await logged_in.gateway.send('GET', '/api/tasks')

        assert logged_in.store.load() is None
        assert len(logged_in.session_ended) == 1
        assert len(logged_in.service.calls_to('/api/tasks')) == 1

    @pytest.mark.asyncio
    async def test_no_stored_tokens_fails_without_refresh(self, client):
        """Test a 401 with no refresh token raises NoRefreshToken and makes no refresh call."""
        with pytest.raises(NoRefreshToken):
            await client.gateway.send('GET', '/api/tasks')

        assert client.service.refresh_count == 0
        assert client.service.calls_to('/api/tasks')[0].token is None
        assert len(client.session_ended) == 1

    @pytest.mark.asyncio
    async def test_refresh_endpoint_rejection_not_intercepted(self, logged_in):
        """Test a 401 from the refresh endpoint itself never triggers another refresh."""
        with pytest.raises(InvalidRefreshToken):
            await logged_in.gateway.send('POST', '/api/refresh', {'refreshToken': 'bogus'})

        assert logged_in.service.refresh_count == 1
        assert logged_in.store.load() == TokenPair('A1', 'R1')

    @pytest.mark.asyncio
    async def test_server_error_not_retried(self, logged_in):
        """Test a non-auth failure is reported as RequestFailed without refresh or retry."""
        logged_in.service.inject('GET', '/api/tasks', 500)

        with pytest.raises(RequestFailed) as exc_info:
            await logged_in.gateway.send('GET', '/api/tasks')

        assert exc_info.value.status == 500
        assert exc_info.value.method == 'GET'
        assert exc_info.value.path == '/api/tasks'
        assert len(logged_in.service.calls_to('/api/tasks')) == 1
        assert logged_in.service.refresh_count == 0

    @pytest.mark.asyncio
    async def test_retry_server_error_reported_with_retry_status(self, logged_in):
        """Test a failed replay reports the replay's status."""
        logged_in.service.expire_access_tokens()
        logged_in.service.inject('GET', '/api/tasks', 401, 503)

        with pytest.raises(RequestFailed) as exc_info:
            await logged_in.gateway.send('GET', '/api/tasks')

        assert exc_info.value.status == 503
        assert logged_in.service.refresh_count == 1


class TestRequestGatewayUnit:
    """Test RequestGateway with a mocked transport."""

    @pytest.fixture
    def transport(self):
        transport = MagicMock()
        transport.request = AsyncMock()
        return transport

    @pytest.fixture
    def coordinator(self):
        coordinator = MagicMock()
        coordinator.get_valid_token = AsyncMock(return_value='A2')
        return coordinator

    @pytest.fixture
    def gateway(self, transport, coordinator):
        return RequestGateway(transport, MemoryTokenStorage(TokenPair('A1', 'R1')), coordinator)

    @pytest.mark.asyncio
    async def test_login_rejection_maps_to_invalid_credentials(self, gateway, transport, coordinator):
        """Test 401 from the login endpoint raises InvalidCredentials without refresh."""
        transport.request.return_value = ApiResponse(status=401, data={'error': 'Invalid password'})

        with pytest.raises(InvalidCredentials) as exc_info:
            await gateway.send('POST', '/api/login', {'email': 'a@b.c', 'password': 'x'})

        assert exc_info.value.message == 'Invalid password'
        coordinator.get_valid_token.assert_not_awaited()
        assert transport.request.await_count == 1

    @pytest.mark.asyncio
    async def test_register_rejection_maps_to_user_exists(self, gateway, transport, coordinator):
        """Test 403 from the register endpoint raises UserExists without refresh."""
        transport.request.return_value = ApiResponse(status=403, data={'error': 'User already exists'})

        with pytest.raises(UserExists):
            await gateway.send('POST', '/api/register/', {'email': 'a@b.c', 'password': 'x'})

        coordinator.get_valid_token.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retry_uses_new_token(self, gateway, transport, coordinator):
        """Test the replay carries the token handed out by the coordinator."""
        transport.request.side_effect = [
            ApiResponse(status=401, data={'error': 'Invalid token'}),
            ApiResponse(status=200, data=[]),
        ]

        response = await gateway.send('get', '/api/tasks')

        assert response.data == []
        coordinator.get_valid_token.assert_awaited_once_with(stale_token='A1')
        retry_headers = transport.request.await_args_list[1].kwargs['headers']
        assert retry_headers == {'Authorization': 'Bearer A2'}

    @pytest.mark.asyncio
    async def test_network_failure_propagates_without_retry(self, gateway, transport, coordinator):
        """Test a transport failure surfaces as RequestFailed with no status."""
        transport.request.side_effect = RequestFailed("Network error: connection refused", method='GET', path='/api/tasks')

        with pytest.raises(RequestFailed) as exc_info:
            await gateway.send('GET', '/api/tasks')

        assert exc_info.value.status is None
        coordinator.get_valid_token.assert_not_awaited()
        assert transport.request.await_count == 1

    @pytest.mark.asyncio
    async def test_error_message_from_body(self, gateway, transport):
        """Test the service's error message becomes the user message."""
        transport.request.return_value = ApiResponse(status=404, data={'error': 'Task not found'})

        with pytest.raises(RequestFailed) as exc_info:
            await gateway.delete('/api/tasks/99')

        assert exc_info.value.user_message == 'Task not found'
        assert exc_info.value.status == 404
