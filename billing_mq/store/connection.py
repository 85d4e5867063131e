"""
Store connection management.
Owns the store sessions and reports connectivity changes to observers.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from types import TracebackType

from billing_mq.config import get_settings
from billing_mq.constants import ConnectionEvent, SessionRole
from billing_mq.errors import QueueConnectionError, ShutdownError
from billing_mq.store.base import QueueStore, StoreFactory

logger = logging.getLogger(__name__)

# Called with the event and, for ERROR, the exception that caused it
ConnectionObserver = Callable[[ConnectionEvent, Exception | None], Awaitable[None] | None]


class ConnectionManager:
    """
    Lifecycle manager for store sessions.

    Holds three independent sessions so a blocking pop on the subscriber
    session never delays a publish:
    - general: stats, promotion, dead-letter maintenance
    - publisher: publishes, retries, broadcast publishes
    - subscriber: blocking pops, pattern subscriptions

    Usage:
        async with ConnectionManager(InMemoryStore.factory()) as connection:
            store = connection.session(SessionRole.PUBLISHER)
    """

    def __init__(
        self,
        store_factory: StoreFactory,
        health_check_interval: float | None = None,
    ):
        """
        Initialize the connection manager.

        Args:
            store_factory: Builds one store session per role.
            health_check_interval: Seconds between connectivity probes.
        """
        settings = get_settings()

        self._store_factory = store_factory
        self.health_check_interval = (
            health_check_interval or settings.health_check_interval_seconds
        )

        self._sessions: dict[SessionRole, QueueStore] = {}
        self._observers: list[ConnectionObserver] = []
        self._connected = False
        self._closed = False
        self._monitor_task: asyncio.Task | None = None

    async def __aenter__(self) -> "ConnectionManager":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.disconnect()

    def is_connected(self) -> bool:
        """Whether the store was reachable at the last check."""
        return self._connected and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    def add_observer(self, observer: ConnectionObserver) -> None:
        """Register a callback for connected / disconnected / error events."""
        if observer not in self._observers:
            self._observers.append(observer)

    def remove_observer(self, observer: ConnectionObserver) -> None:
        """Unregister a previously added callback."""
        if observer in self._observers:
            self._observers.remove(observer)

    async def connect(self) -> None:
        """
        Open all sessions and verify the store is reachable.

        Raises:
            ShutdownError: If the manager was already disconnected.
            QueueConnectionError: If the store cannot be reached.
        """
        if self._closed:
            raise ShutdownError("Connection manager has been shut down")
        if self._sessions:
            return

        sessions = {role: self._store_factory(role) for role in SessionRole}
        try:
            await asyncio.gather(*(session.ping() for session in sessions.values()))
        except QueueConnectionError as e:
            logger.error("Failed to connect to store", extra={"error": str(e)})
            await self._close_sessions(sessions)
            await self._notify(ConnectionEvent.ERROR, e)
            raise

        self._sessions = sessions
        self._connected = True
        self._monitor_task = asyncio.create_task(self._monitor_loop())

        logger.info("Store connection initialized", extra={"sessions": len(sessions)})
        await self._notify(ConnectionEvent.CONNECTED)

    async def disconnect(self) -> None:
        """
        Close every session.

        All sessions are released even if closing one of them fails; the first
        failure is re-raised afterwards. Later calls to ``session`` raise
        ``ShutdownError``.
        """
        if self._closed:
            return
        self._closed = True

        if self._monitor_task is not None:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

        sessions, self._sessions = self._sessions, {}
        was_connected, self._connected = self._connected, False
        first_error = await self._close_sessions(sessions)

        logger.info("Store connection closed")
        if was_connected:
            await self._notify(ConnectionEvent.DISCONNECTED)

        if first_error is not None:
            raise first_error

    def session(self, role: SessionRole) -> QueueStore:
        """
        Get the session for a role.

        Raises:
            ShutdownError: If the manager was disconnected.
            QueueConnectionError: If ``connect`` has not been called.
        """
        if self._closed:
            raise ShutdownError("Message queue has been disconnected")
        session = self._sessions.get(role)
        if session is None:
            raise QueueConnectionError("Message queue not connected")
        return session

    async def check(self) -> bool:
        """
        Probe the store once and emit events on state change.

        Returns:
            True if the store answered.
        """
        try:
            await self.session(SessionRole.GENERAL).ping()
        except QueueConnectionError as e:
            if self._connected:
                self._connected = False
                logger.warning("Store connection lost", extra={"error": str(e)})
                await self._notify(ConnectionEvent.ERROR, e)
                await self._notify(ConnectionEvent.DISCONNECTED)
            return False

        if not self._connected:
            self._connected = True
            logger.info("Store connection restored")
            await self._notify(ConnectionEvent.CONNECTED)
        return True

    async def _monitor_loop(self) -> None:
        """Periodically probe the store so observers learn about outages."""
        while not self._closed:
            await asyncio.sleep(self.health_check_interval)
            try:
                await self.check()
            except ShutdownError:
                break

    async def _notify(self, event: ConnectionEvent, error: Exception | None = None) -> None:
        for observer in list(self._observers):
            try:
                result = observer(event, error)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Connection observer failed", extra={"event": str(event)})

    @staticmethod
    async def _close_sessions(sessions: dict[SessionRole, QueueStore]) -> Exception | None:
        first_error: Exception | None = None
        for role, session in sessions.items():
            try:
                await session.close()
            except Exception as e:
                logger.exception("Error closing store session", extra={"role": str(role)})
                if first_error is None:
                    first_error = e
        return first_error
