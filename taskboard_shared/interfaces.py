"""
Core interfaces for the Task Board client.

This module defines the abstract interfaces that the authentication and
request layers are written against, so that implementations can be swapped
(for example a lock-protected refresh coordinator for a threaded host).
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from .models import TokenPair


class ITokenStore(ABC):
    """Interface for the holder of the current token pair."""

    @abstractmethod
    def load(self) -> Optional[TokenPair]:
        """Read the persisted pair; ``None`` when absent or unreadable."""
        pass

    @abstractmethod
    def save(self, pair: TokenPair) -> None:
        """Persist both tokens as a single replacement."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove both tokens."""
        pass


class IAuthClient(ABC):
    """Interface for the authentication endpoints."""

    @abstractmethod
    async def login(self, email: str, password: str) -> TokenPair:
        pass

    @abstractmethod
    async def register(self, email: str, password: str, confirm_password: Optional[str] = None) -> TokenPair:
        pass

    @abstractmethod
    async def refresh(self, refresh_token: str) -> TokenPair:
        pass


class IRefreshCoordinator(ABC):
    """Interface for single-flight access token renewal."""

    @abstractmethod
    async def get_valid_token(self, stale_token: Optional[str] = None) -> str:
        """
        Obtain a fresh access token, joining an in-flight refresh if any.

        Args:
            stale_token: The access token that was just rejected, if known
        """
        pass

    @abstractmethod
    def add_session_ended_callback(self, callback: Callable[[Exception], None]) -> None:
        pass

    @abstractmethod
    def is_refreshing(self) -> bool:
        pass


class IRequestGateway(ABC):
    """Interface for authenticated API calls."""

    @abstractmethod
    async def send(self, method: str, path: str, body: Optional[Any] = None) -> Any:
        pass


class IConfigurationManager(ABC):
    """Interface for configuration management."""

    @abstractmethod
    def get_server_url(self) -> str:
        """Get the task service URL."""
        pass

    @abstractmethod
    def get_config(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        pass

    @abstractmethod
    def set_config(self, key: str, value: Any) -> None:
        """Set configuration value."""
        pass

    @abstractmethod
    def get_all_config(self) -> Dict[str, Any]:
        """Get all configuration data."""
        pass
