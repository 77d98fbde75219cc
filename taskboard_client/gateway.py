"""
Request gateway for the Task Board client.

Every authenticated API call goes through RequestGateway.send(). The gateway
attaches the current access token, and when the service rejects it, obtains a
new one from the refresh coordinator and replays the request exactly once.
"""

import logging
from typing import Any, Dict, Optional

from taskboard_client.auth.auth_client import auth_error_for, is_auth_path
from taskboard_client.transport import ApiResponse, HTTPTransport
from taskboard_shared.exceptions import RequestFailed
from taskboard_shared.interfaces import IRefreshCoordinator, IRequestGateway, ITokenStore
from taskboard_shared.logging_config import mask_token

logger = logging.getLogger(__name__)


AUTH_FAILURE_STATUSES = (401, 403)


class RequestGateway(IRequestGateway):
    """
    Sends API requests with automatic token renewal.

    Per request: ``Sent -> Success``, ``Sent -> OtherFailed`` or
    ``Sent -> AuthFailed -> AwaitingRefresh -> Retried -> Success | Failed``.
    A replayed request is never refreshed or replayed again.
    """

    def __init__(self, transport: HTTPTransport, token_store: ITokenStore, coordinator: IRefreshCoordinator):
        self.transport = transport
        self.token_store = token_store
        self.coordinator = coordinator

    def _auth_headers(self, access_token: Optional[str]) -> Dict[str, str]:
        headers = {}
        if access_token:
            headers['Authorization'] = f'Bearer {access_token}'
        return headers

    async def send(self, method: str, path: str, body: Optional[Any] = None) -> ApiResponse:
        """
        Send an API request.

        Args:
            method: HTTP method
            path: API path, e.g. ``/api/tasks``
            body: JSON-serializable request body

        Returns:
            The successful response

        Raises:
            InvalidCredentials, UserExists, InvalidRefreshToken: 401/403 from
                the login, register or refresh endpoint respectively
            NoRefreshToken, InvalidRefreshToken: The access token was rejected
                and could not be renewed
            SessionReplaced: The user logged out or in again while the access
                token was being renewed
            RequestFailed: Any other failure, including a failed replay
        """
        method = method.upper()
        pair = self.token_store.load()
        access_token = pair.access_token if pair else None

        response = await self.transport.request(
            method, path, body=body, headers=self._auth_headers(access_token)
        )

        if response.ok:
            return response

        if response.status in AUTH_FAILURE_STATUSES:
            if is_auth_path(path):
                raise auth_error_for(path, response)
            return await self._refresh_and_retry(method, path, body, access_token, response)

        raise self._request_failed(method, path, response)

    async def _refresh_and_retry(
        self,
        method: str,
        path: str,
        body: Optional[Any],
        rejected_token: Optional[str],
        response: ApiResponse
    ) -> ApiResponse:
        logger.info(
            f"{method} {path} rejected with {response.status} "
            f"(token {mask_token(rejected_token)}), renewing access token"
        )

        new_token = await self.coordinator.get_valid_token(stale_token=rejected_token)

        retry = await self.transport.request(
            method, path, body=body, headers=self._auth_headers(new_token)
        )

        if retry.ok:
            logger.debug(f"{method} {path} succeeded after token renewal")
            return retry

        logger.warning(f"{method} {path} failed again after token renewal ({retry.status})")
        raise self._request_failed(method, path, retry)

    def _request_failed(self, method: str, path: str, response: ApiResponse) -> RequestFailed:
        message = response.error_message(f"Request failed ({response.status})")
        return RequestFailed(
            f"{method} {path} failed ({response.status}): {message}",
            status=response.status,
            method=method,
            path=path,
            user_message=message
        )

    # Convenience wrappers

    async def get(self, path: str) -> ApiResponse:
        return await self.send('GET', path)

    async def post(self, path: str, body: Optional[Any] = None) -> ApiResponse:
        return await self.send('POST', path, body)

    async def put(self, path: str, body: Optional[Any] = None) -> ApiResponse:
        return await self.send('PUT', path, body)

    async def delete(self, path: str) -> ApiResponse:
        return await self.send('DELETE', path)
