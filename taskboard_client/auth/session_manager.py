"""
Session Manager for the Task Board client.

This module wires token storage, the authentication client, the refresh
coordinator and the request gateway together, and tracks whether the user is
logged in.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable, List

from jose import jwt, JWTError

from taskboard_client.api_client import TaskBoardAPIClient
from taskboard_client.auth.auth_client import AuthClient
from taskboard_client.auth.refresh_coordinator import RefreshCoordinator
from taskboard_client.auth.token_storage import SecureTokenStorage
from taskboard_client.board import BoardController
from taskboard_client.config import ClientConfiguration
from taskboard_client.gateway import RequestGateway
from taskboard_client.transport import HTTPTransport
from taskboard_shared.interfaces import ITokenStore
from taskboard_shared.logging_config import AuditLogger
from taskboard_shared.models import TokenPair

logger = logging.getLogger(__name__)


def read_token_claims(token: str) -> Dict[str, Any]:
    """
    Read the claims of a JWT without verifying its signature.

    Returns:
        The claims, or an empty dict for tokens that are not JWTs
    """
    try:
        return jwt.get_unverified_claims(token)
    except JWTError as e:
        logger.debug(f"Token claims unavailable: {e}")
        return {}


def token_expiration(token: str) -> Optional[datetime]:
    """Get the ``exp`` instant of a JWT, if it has one."""
    exp = read_token_claims(token).get('exp')
    if exp is None:
        return None
    try:
        return datetime.fromtimestamp(float(exp), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


class SessionManager:
    """
    Owns the client components for one user session.

    Provides login, registration and logout, restores a stored session on
    startup, and notifies callbacks whenever the user becomes logged in or
    out, including when a failed token refresh ends the session.
    """

    def __init__(
        self,
        config: Optional[ClientConfiguration] = None,
        token_store: Optional[ITokenStore] = None,
        transport: Optional[HTTPTransport] = None
    ):
        self.config = config or ClientConfiguration()
        self.token_store = token_store or SecureTokenStorage(
            service_name=self.config.get_service_name(),
            backend=self.config.get_token_backend(),
            storage_path=self.config.get_token_file()
        )
        self.transport = transport or HTTPTransport(
            self.config.get_server_url(),
            timeout=self.config.get_server_timeout()
        )
        self.audit = AuditLogger()

        self.auth_client = AuthClient(self.transport, self.token_store, self.audit)
        self.coordinator = RefreshCoordinator(self.auth_client, self.token_store, self.audit)
        self.gateway = RequestGateway(self.transport, self.token_store, self.coordinator)
        self.api_client = TaskBoardAPIClient(self.gateway, self.transport)
        self.board = BoardController(self.api_client)

        self._auth_callbacks: List[Callable[[bool], None]] = []
        self.coordinator.add_session_ended_callback(self._on_session_ended)

        logger.debug("Session manager initialized")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def add_auth_callback(self, callback: Callable[[bool], None]) -> None:
        """
        Add callback for authentication state changes.

        Args:
            callback: Function called with authentication status (bool)
        """
        self._auth_callbacks.append(callback)

    def _notify_auth_change(self, is_authenticated: bool) -> None:
        """Notify callbacks of authentication state change."""
        for callback in self._auth_callbacks:
            try:
                callback(is_authenticated)
            except Exception as e:
                logger.error(f"Error in auth callback: {e}")

    def _on_session_ended(self, error: Exception) -> None:
        logger.warning(f"Session ended: {error}")
        self.board.board = None
        self._notify_auth_change(False)

    async def login(self, email: str, password: str) -> TokenPair:
        """Log in and start a session."""
        pair = await self.auth_client.login(email, password)
        self.coordinator.discard_refresh()
        self._notify_auth_change(True)
        return pair

    async def register(self, email: str, password: str, confirm_password: Optional[str] = None) -> TokenPair:
        """Create an account and start a session."""
        pair = await self.auth_client.register(email, password, confirm_password)
        self.coordinator.discard_refresh()
        self._notify_auth_change(True)
        return pair

    def logout(self) -> None:
        """
        Logout and clear authentication state.
        """
        user_id = self.get_current_user_id()
        logger.info("Logging out and clearing authentication state")

        self.coordinator.discard_refresh(logged_out=True)
        self.token_store.clear()
        self.board.board = None

        self.audit.log_logout(user_id)
        self._notify_auth_change(False)

    def load_stored_session(self) -> bool:
        """
        Restore the session persisted by a previous run.

        A stored pair whose refresh token has already expired cannot be
        renewed and is discarded.

        Returns:
            True if a usable session was restored
        """
        pair = self.token_store.load()
        if pair is None:
            logger.info("No stored session found")
            return False

        refresh_expires_at = token_expiration(pair.refresh_token)
        if refresh_expires_at is not None and datetime.now(timezone.utc) >= refresh_expires_at:
            logger.info("Stored session has expired")
            self.token_store.clear()
            return False

        self._notify_auth_change(True)
        logger.info("Restored stored session")
        return True

    def is_authenticated(self) -> bool:
        """Check whether a token pair is held."""
        return self.token_store.load() is not None

    def get_current_user_id(self) -> Optional[str]:
        pair = self.token_store.load()
        if pair is None:
            return None
        user_id = read_token_claims(pair.access_token).get('userId')
        return str(user_id) if user_id is not None else None

    def get_token_info(self) -> Optional[Dict[str, Any]]:
        """
        Describe the current tokens from their unverified claims.

        Returns:
            Token information, or None when logged out
        """
        pair = self.token_store.load()
        if pair is None:
            return None

        now = datetime.now(timezone.utc)
        access_expires_at = token_expiration(pair.access_token)
        refresh_expires_at = token_expiration(pair.refresh_token)

        return {
            'user_id': self.get_current_user_id(),
            'access_expires_at': access_expires_at.isoformat() if access_expires_at else None,
            'refresh_expires_at': refresh_expires_at.isoformat() if refresh_expires_at else None,
            'access_expired': access_expires_at is not None and now >= access_expires_at,
            'refresh_expired': refresh_expires_at is not None and now >= refresh_expires_at,
        }

    async def close(self) -> None:
        """Cancel any in-flight refresh and close the HTTP session."""
        await self.coordinator.shutdown()
        await self.transport.close()
