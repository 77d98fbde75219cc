"""
HTTP transport for the Task Board client.

This module owns the aiohttp session used by both the authentication client
and the request gateway. It performs exactly one HTTP exchange per call and
turns network failures into RequestFailed; status handling is left to the
callers.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any
from urllib.parse import urljoin

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError

from taskboard_shared.exceptions import RequestFailed, ErrorCode

logger = logging.getLogger(__name__)


USER_AGENT = 'TaskBoardClient/1.0'


@dataclass
class ApiResponse:
    """Status and decoded body of one HTTP exchange."""
    status: int
    data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def error_message(self, default: str = "Unknown error") -> str:
        """Pull the service's ``{error}`` message out of a failed response."""
        if isinstance(self.data, dict):
            return str(self.data.get('error') or self.data.get('detail') or default)
        if isinstance(self.data, str) and self.data:
            return self.data
        return default


class HTTPTransport:
    """
    Thin wrapper around an aiohttp ClientSession.

    The session is created lazily on the running event loop and can be
    shared by several components; ``close()`` releases it.
    """

    def __init__(self, server_url: str, timeout: float = 30.0, session: Optional[ClientSession] = None):
        self.server_url = server_url.rstrip('/') + '/'
        self.timeout = ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

        logger.debug(f"HTTP transport initialized for server: {self.server_url}")

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> ClientSession:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                limit_per_host=5,
                keepalive_timeout=30,
                enable_cleanup_closed=True
            )
            self._session = ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers={'User-Agent': USER_AGENT}
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this transport created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def url_for(self, path: str) -> str:
        return urljoin(self.server_url, path.lstrip('/'))

    async def request(
        self,
        method: str,
        path: str,
        body: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> ApiResponse:
        """
        Perform a single HTTP request.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            path: API path relative to the server URL
            body: JSON-serializable request body
            headers: Extra request headers

        Returns:
            ApiResponse for any HTTP status

        Raises:
            RequestFailed: If no response was received
        """
        session = await self._ensure_session()
        url = self.url_for(path)
        method = method.upper()

        logger.debug(f"{method} {url}")

        try:
            async with session.request(
                method=method,
                url=url,
                json=body,
                headers=headers or {}
            ) as response:
                data = await self._read_body(response)
                return ApiResponse(
                    status=response.status,
                    data=data,
                    headers=dict(response.headers)
                )

        except asyncio.TimeoutError as e:
            logger.warning(f"Request timed out: {method} {path}")
            raise RequestFailed(
                f"Request timed out: {method} {path}",
                method=method,
                path=path,
                error_code=ErrorCode.REQUEST_TIMEOUT,
                cause=e
            )
        except (ClientError, OSError) as e:
            logger.warning(f"Network error on {method} {path}: {e}")
            raise RequestFailed(
                f"Network error: {e}",
                method=method,
                path=path,
                cause=e
            )

    async def _read_body(self, response: aiohttp.ClientResponse) -> Any:
        """Decode a JSON body, falling back to text for anything else."""
        text = await response.text()
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
