"""Real-time transport abstraction and its Socket.IO implementation.

The chat session talks to a ``RealtimeTransport``: connect, disconnect,
emit, and a single listener per event name.  ``SocketIOTransport`` maps that
onto ``socketio.AsyncClient``, whose built-in reconnection (exponential
backoff with jitter) provides the automatic retry after network loss.

Usage:
    transport = SocketIOTransport("http://10.0.0.58:3000", auth={"userId": "u1"})
    transport.on("new-message", handle_message)
    await transport.connect()
    await transport.emit("join-game", "game-1")
"""
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import socketio
from socketio import exceptions as sio_exceptions

from ..config import RealtimeSettings

logger = logging.getLogger(__name__)

Listener = Callable[..., Union[None, Awaitable[None]]]

# Inbound events the chat core listens for
CONNECT = "connect"
DISCONNECT = "disconnect"
NEW_MESSAGE = "new-message"
USER_JOINED = "user-joined"
USER_LEFT = "user-left"

# Outbound events
JOIN_GAME = "join-game"
LEAVE_GAME = "leave-game"
SEND_MESSAGE = "send-message"

INBOUND_EVENTS = (CONNECT, DISCONNECT, NEW_MESSAGE, USER_JOINED, USER_LEFT)


class TransportError(Exception):
    """The channel could not connect, send or close."""


class RealtimeTransport(ABC):
    """Bidirectional event channel to the chat server.

    Implementations keep at most one listener per event; ``on`` replaces any
    previous one and ``remove_all_listeners`` detaches everything so no
    further events reach the old owner.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, Listener] = {}

    @property
    @abstractmethod
    def connected(self) -> bool:
        """True while the underlying channel is up."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the channel.  May block while retrying."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the channel and stop any reconnection."""

    @abstractmethod
    async def emit(self, event: str, data: Any = None) -> None:
        """Send *event* with *data* to the server."""

    def on(self, event: str, listener: Listener) -> None:
        self._listeners[event] = listener

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    async def dispatch(self, event: str, *args: Any) -> None:
        """Deliver an inbound event to its listener, if any."""
        listener = self._listeners.get(event)
        if listener is None:
            return
        result = listener(*args)
        if inspect.isawaitable(result):
            await result


class SocketIOTransport(RealtimeTransport):
    """``RealtimeTransport`` backed by ``socketio.AsyncClient``."""

    def __init__(
        self,
        url: str,
        *,
        auth: Optional[Dict[str, Any]] = None,
        settings: Optional[RealtimeSettings] = None,
        client: Optional[socketio.AsyncClient] = None,
    ) -> None:
        super().__init__()
        self.url = url
        self.auth = auth or {}
        self.settings = settings or RealtimeSettings()
        self._sio = client or socketio.AsyncClient(
            reconnection=self.settings.reconnection,
            reconnection_attempts=self.settings.reconnection_attempts,
            reconnection_delay=self.settings.reconnection_delay,
            reconnection_delay_max=self.settings.reconnection_delay_max,
            logger=False,
            engineio_logger=False,
        )
        for event in INBOUND_EVENTS:
            self._sio.on(event, self._forwarder(event))

    def _forwarder(self, event: str) -> Callable[..., Awaitable[None]]:
        async def forward(*args: Any) -> None:
            await self.dispatch(event, *args)
        return forward

    @property
    def connected(self) -> bool:
        return self._sio.connected

    async def connect(self) -> None:
        logger.info("Connecting to %s", self.url)
        try:
            await self._sio.connect(
                self.url,
                auth=self.auth,
                socketio_path=self.settings.socketio_path,
                retry=self.settings.reconnection,
            )
        except sio_exceptions.SocketIOError as exc:
            raise TransportError(f"connect to {self.url} failed: {exc}") from exc

    async def disconnect(self) -> None:
        try:
            await self._sio.disconnect()
        except sio_exceptions.SocketIOError as exc:
            raise TransportError(str(exc)) from exc

    async def emit(self, event: str, data: Any = None) -> None:
        try:
            await self._sio.emit(event, data)
        except sio_exceptions.SocketIOError as exc:
            raise TransportError(f"emit {event} failed: {exc}") from exc


TransportFactory = Callable[[str, str], RealtimeTransport]


def socketio_transport_factory(url: str, settings: Optional[RealtimeSettings] = None) -> TransportFactory:
    """Build a factory producing a fresh ``SocketIOTransport`` per (game, user)."""

    def factory(room_id: str, user_id: str) -> RealtimeTransport:
        return SocketIOTransport(
            url,
            auth={"userId": user_id, "gameId": room_id},
            settings=settings,
        )

    return factory
