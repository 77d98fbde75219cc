"""
Single-flight access token renewal.

The coordinator makes sure that at most one refresh call is outstanding at
any time. Callers that need a new access token while a refresh is running
join the current episode and are all resolved, in arrival order, with its
outcome.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from taskboard_shared.exceptions import NoRefreshToken, SessionReplaced, TaskBoardError, handle_exception
from taskboard_shared.interfaces import IAuthClient, IRefreshCoordinator, ITokenStore
from taskboard_shared.logging_config import AuditLogger

logger = logging.getLogger(__name__)


class RefreshState(Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


@dataclass
class RefreshEpisode:
    """One in-flight refresh call and the callers waiting on it."""
    refresh_token: str
    waiters: List[asyncio.Future] = field(default_factory=list)
    task: Optional[asyncio.Task] = None
    started_at: datetime = field(default_factory=datetime.now)

    def add_waiter(self) -> asyncio.Future:
        waiter = asyncio.get_running_loop().create_future()
        self.waiters.append(waiter)
        return waiter


class RefreshCoordinator(IRefreshCoordinator):
    """
    Coordinates access token renewal for a single event loop.

    All state lives in the current ``RefreshEpisode``; between episodes the
    coordinator is idle. This implementation relies on cooperative
    scheduling: the check for an active episode and its creation happen
    without a suspension point in between.
    """

    def __init__(self, auth_client: IAuthClient, token_store: ITokenStore, audit_logger: Optional[AuditLogger] = None):
        self.auth_client = auth_client
        self.token_store = token_store
        self.audit = audit_logger or AuditLogger()

        self._episode: Optional[RefreshEpisode] = None
        self._session_ended_callbacks: List[Callable[[Exception], None]] = []
        self._session_over = False

    @property
    def state(self) -> RefreshState:
        return RefreshState.REFRESHING if self._episode is not None else RefreshState.IDLE

    def is_refreshing(self) -> bool:
        return self._episode is not None

    def add_session_ended_callback(self, callback: Callable[[Exception], None]) -> None:
        """
        Add callback for involuntary session ends.

        Args:
            callback: Function called with the error that ended the session
        """
        self._session_ended_callbacks.append(callback)

    async def get_valid_token(self, stale_token: Optional[str] = None) -> str:
        """
        Get a freshly issued access token.

        Args:
            stale_token: The access token that was just rejected. If the store
                already holds a different one, it is returned without a new
                refresh.

        Returns:
            The new access token

        Raises:
            NoRefreshToken: No refresh token is stored
            SessionReplaced: The session was logged out or replaced while
                the refresh was pending
            TaskBoardError: The refresh failed; the session has been ended
        """
        if self._episode is None:
            pair = self.token_store.load()

            if pair is not None:
                self._session_over = False

            if stale_token is not None and pair is not None and pair.access_token != stale_token:
                logger.debug("Access token already replaced, skipping refresh")
                return pair.access_token

            if pair is None or not pair.refresh_token:
                error = NoRefreshToken()
                if self._session_over:
                    logger.debug("Refresh requested after the session ended")
                    raise error

                logger.warning("Refresh requested without a stored refresh token")
                self.token_store.clear()
                self._end_session(error)
                raise error

            self._episode = RefreshEpisode(refresh_token=pair.refresh_token)
            waiter = self._episode.add_waiter()
            self._episode.task = asyncio.create_task(self._run_episode(self._episode))
            logger.info("Access token rejected, refreshing")
        else:
            waiter = self._episode.add_waiter()
            logger.debug(f"Joining in-flight refresh ({len(self._episode.waiters)} waiting)")

        return await waiter

    async def _run_episode(self, episode: RefreshEpisode) -> None:
        try:
            pair = await self.auth_client.refresh(episode.refresh_token)

        except asyncio.CancelledError:
            self._finish(episode)
            for waiter in episode.waiters:
                if not waiter.done():
                    waiter.cancel()
            raise

        except Exception as e:
            error = handle_exception(e)
            self._finish(episode)

            current = self.token_store.load()
            if current is None or current.refresh_token != episode.refresh_token:
                # Logged out or logged in again meanwhile; that session is not ours to end.
                logger.info(f"Token refresh failed for a replaced session: {error.message}")
                self._reject_waiters(episode, error)
                return

            self.token_store.clear()

            logger.warning(f"Token refresh failed, ending session: {error.message}")
            self.audit.log_token_refresh(
                success=False,
                waiters=len(episode.waiters),
                failure_reason=error.message
            )

            self._reject_waiters(episode, error)
            self._end_session(error)
            return

        self._finish(episode)
        self.audit.log_token_refresh(success=True, waiters=len(episode.waiters))

        for waiter in episode.waiters:
            if not waiter.done():
                waiter.set_result(pair.access_token)

    def _finish(self, episode: RefreshEpisode) -> None:
        if self._episode is episode:
            self._episode = None

        duration = (datetime.now() - episode.started_at).total_seconds()
        logger.debug(f"Refresh episode settled after {duration:.3f}s with {len(episode.waiters)} waiters")

    @staticmethod
    def _reject_waiters(episode: RefreshEpisode, error: Exception) -> None:
        # Each waiter raises its own copy of the error.
        for waiter in episode.waiters:
            if not waiter.done():
                waiter.set_exception(copy.copy(error))

    def _end_session(self, error: Exception) -> None:
        """Notify callbacks that the session ended involuntarily."""
        self._session_over = True
        reason = error.message if isinstance(error, TaskBoardError) else str(error)
        self.audit.log_session_ended(reason, error if isinstance(error, TaskBoardError) else None)

        for callback in self._session_ended_callbacks:
            try:
                callback(error)
            except Exception as e:
                logger.error(f"Error in session ended callback: {e}")

    def discard_refresh(self, logged_out: bool = False) -> None:
        """
        Abandon an in-flight refresh without letting it touch the token store.

        Called when the user logs out or logs in again. Callers waiting on
        the refresh are rejected with SessionReplaced.

        Args:
            logged_out: The session was closed by the user; later requests
                that find no tokens do not report an involuntary session end
        """
        self._session_over = logged_out

        episode = self._episode
        if episode is None:
            return

        self._episode = None
        logger.info(f"Discarding in-flight refresh ({len(episode.waiters)} waiting)")

        if episode.task is not None and not episode.task.done():
            episode.task.cancel()
        self._reject_waiters(episode, SessionReplaced())

    async def shutdown(self) -> None:
        """Cancel an in-flight refresh, if any."""
        episode = self._episode
        if episode is not None and episode.task is not None and not episode.task.done():
            episode.task.cancel()
            try:
                await episode.task
            except asyncio.CancelledError:
                pass

        if episode is not None and self._episode is episode:
            # A task cancelled before its first step never reaches its own cleanup.
            self._finish(episode)
            for waiter in episode.waiters:
                if not waiter.done():
                    waiter.cancel()
