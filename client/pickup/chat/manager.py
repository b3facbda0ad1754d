"""Owner of the one live chat session a client may hold.

The app creates a single ``ChatSessionManager`` and hands it to whichever
view shows a game chat.  Opening a chat for another game closes the
previous session completely (leave-game emitted, listeners detached,
transport closed, history load cancelled) before the new session attaches
its listeners, so at most one real-time connection exists at a time.

Usage:
    manager = ChatSessionManager.from_config(config, backend_client)
    session = await manager.open("game-1", user_id, username)
    ...
    await manager.close()
"""
import asyncio
import logging
from typing import Callable, Optional

from ..api.client import BackendClient
from ..config import AppConfig
from .history import MessageHistoryLoader
from .schemas import ConnectionState
from .session import ChatSession
from .transport import socketio_transport_factory

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], ChatSession]


class ChatSessionManager:
    """Creates and tears down chat sessions, one at a time."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory
        self._active: Optional[ChatSession] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        client: BackendClient,
        *,
        relay_sends: bool = False,
    ) -> "ChatSessionManager":
        """Build a manager whose sessions use Socket.IO and the REST history."""
        transport_factory = socketio_transport_factory(config.realtime_url, config.realtime)
        loader = MessageHistoryLoader(client)

        def factory() -> ChatSession:
            return ChatSession(
                transport_factory,
                loader,
                settings=config.chat,
                connect_timeout=config.realtime.connect_timeout_seconds,
                relay=client if relay_sends else None,
            )

        return cls(factory)

    @property
    def active(self) -> Optional[ChatSession]:
        return self._active

    async def open(self, room_id: str, user_id: str, username: str = "") -> ChatSession:
        """Return a session joined to *room_id*, closing any other one first."""
        async with self._lock:
            current = self._active
            if (
                current is not None
                and current.room_id == room_id
                and current.user_id == user_id
                and current.state != ConnectionState.DISCONNECTED
            ):
                return current

            if current is not None:
                logger.info("Closing chat for game %s before opening %s", current.room_id, room_id)
                self._active = None
                await current.close()

            session = self._session_factory()
            await session.connect(room_id, user_id, username)
            self._active = session
            return session

    async def close(self) -> None:
        """Close the active session, if any."""
        async with self._lock:
            current, self._active = self._active, None
            if current is not None:
                await current.close()
