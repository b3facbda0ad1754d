"""Chat session for one game room.

A ``ChatSession`` owns the real-time connection, the ordered message list
and the subscriber list for the game currently on screen.  It is created and
closed by the view that shows the chat; nothing about it is process-global.

Update model:
    Every mutation goes through one ``asyncio.Queue`` drained by one worker
    task: UI intents (connect, send, disconnect), transport events
    (connect/disconnect acks, broadcasts, presence), the history result and
    the connect watchdog.  Intents wait on a future for their result; events
    are fire-and-forget.  Each event is stamped with the session generation
    current when its listener was attached, and the worker discards events
    from an older generation, so nothing from a previous room can reach the
    current list.

History race:
    Live events that arrive before the history load completes are buffered
    and replayed, in arrival order, right after the history is seeded.

Connection states:
    disconnected -> connecting -> connected <-> reconnecting -> disconnected
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Set, Tuple

import httpx
from pydantic import ValidationError

from ..api.client import BackendClient, BackendError
from ..config import ChatSettings
from .history import HistoryLoad, MessageHistoryLoader
from .presence import PresenceNotifier
from .reconciler import MessageReconciler, ReconcileOutcome
from .schemas import (
    ConnectionState,
    Message,
    MessageKind,
    SendMessagePayload,
    SessionEvent,
    new_optimistic_id,
    utcnow,
    with_default_room,
)
from .transport import (
    CONNECT,
    DISCONNECT,
    INBOUND_EVENTS,
    JOIN_GAME,
    LEAVE_GAME,
    NEW_MESSAGE,
    SEND_MESSAGE,
    USER_JOINED,
    USER_LEFT,
    RealtimeTransport,
    TransportError,
    TransportFactory,
)

logger = logging.getLogger(__name__)

Subscriber = Callable[[SessionEvent], None]

DEFAULT_CONNECT_TIMEOUT_SECONDS = 10.0

# Subscriber event kinds
EVENT_STATE = "state"
EVENT_MESSAGES = "messages"
EVENT_HISTORY_ERROR = "history_error"
EVENT_DEGRADED = "degraded"

# Commands on the update queue
_INTENT_CONNECT = "intent:connect"
_INTENT_DISCONNECT = "intent:disconnect"
_INTENT_SEND = "intent:send"
_HISTORY_LOADED = "history-loaded"
_TRANSPORT_FAILED = "transport-failed"
_CONNECT_TIMEOUT = "connect-timeout"

_LIVE_EVENTS = (NEW_MESSAGE, USER_JOINED, USER_LEFT)


@dataclass
class _Command:
    kind: str
    payload: Any = None
    # None for intents; events carry the generation they belong to
    generation: Optional[int] = None
    done: Optional["asyncio.Future[Any]"] = None


class ChatSession:
    """One live chat connection plus its ordered message list.

    Args:
        transport_factory: Called with ``(room_id, user_id)`` to build a fresh
            transport for each connect.
        history_loader: Source of the persisted message log.
        settings: Matching window and message length limit.
        connect_timeout: Seconds to wait for the first transport ack before
            reporting a degraded connection.
        clock: Returns the current UTC time; injectable for tests.
        relay: When set, accepted sends are persisted through
            ``POST /message`` instead of the socket ``send-message`` event.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        history_loader: MessageHistoryLoader,
        *,
        settings: Optional[ChatSettings] = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        relay: Optional[BackendClient] = None,
    ) -> None:
        self.settings = settings or ChatSettings()
        self.connect_timeout = connect_timeout
        self._transport_factory = transport_factory
        self._history_loader = history_loader
        self._clock = clock
        self._relay = relay

        self.state = ConnectionState.DISCONNECTED
        self.room_id: Optional[str] = None
        self.user_id: Optional[str] = None
        self.username: str = ""
        self.draft: Optional[str] = None
        self.degraded = False
        self.history_error: Optional[str] = None

        self._reconciler = MessageReconciler(
            match_window=timedelta(seconds=self.settings.match_window_seconds)
        )
        self._presence = PresenceNotifier()
        self._subscribers: List[Subscriber] = []

        self._transport: Optional[RealtimeTransport] = None
        self._generation = 0
        self._history_ready = False
        self._buffered: List[Tuple[str, Any]] = []

        self._queue: Optional["asyncio.Queue[_Command]"] = None
        self._worker: Optional[asyncio.Task] = None  # type: ignore[type-arg]
        self._connect_task: Optional[asyncio.Task] = None  # type: ignore[type-arg]
        self._history_task: Optional[asyncio.Task] = None  # type: ignore[type-arg]
        self._watchdog: Optional[asyncio.Task] = None  # type: ignore[type-arg]
        self._relay_tasks: Set[asyncio.Task] = set()  # type: ignore[type-arg]

    # =========================================================================
    # Read side
    # =========================================================================

    @property
    def messages(self) -> Tuple[Message, ...]:
        """Snapshot of the ordered message list."""
        return self._reconciler.messages

    @property
    def pending_ids(self) -> Tuple[str, ...]:
        """Optimistic message IDs still waiting for their server echo."""
        return self._reconciler.pending_ids

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback* for session events; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # =========================================================================
    # Intents
    # =========================================================================

    async def connect(self, room_id: str, user_id: str, username: str = "") -> None:
        """Join *room_id* as *user_id*, leaving any other room first."""
        await self._call(_INTENT_CONNECT, (room_id, user_id, username))

    async def disconnect(self) -> None:
        """Leave the current room and close the transport.  Idempotent."""
        await self._call(_INTENT_DISCONNECT)

    async def send(self, text: str) -> Optional[Message]:
        """Send *text* to the room.

        Returns:
            The optimistic message shown locally, or None when the send was
            not accepted (blank text, not connected, or too long).  A
            rejected non-blank text is kept in ``draft`` for a retry.
        """
        return await self._call(_INTENT_SEND, text)

    async def drain(self) -> None:
        """Wait for the history load, relayed sends and queued updates to settle.

        The transport connect is not awaited: it may retry indefinitely, and
        its progress is reported through state and ``degraded`` events.
        """
        tasks = [
            task for task in (self._history_task, *self._relay_tasks)
            if task is not None and not task.done()
        ]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        """Disconnect and stop the update worker."""
        if self._worker is None:
            return
        await self.disconnect()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    # =========================================================================
    # Update queue
    # =========================================================================

    def _ensure_worker(self) -> "asyncio.Queue[_Command]":
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())
        return self._queue

    async def _call(self, kind: str, payload: Any = None) -> Any:
        queue = self._ensure_worker()
        done: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()
        queue.put_nowait(_Command(kind=kind, payload=payload, done=done))
        return await done

    def _post(self, kind: str, generation: int, payload: Any = None) -> None:
        if self._queue is None:
            return
        self._queue.put_nowait(_Command(kind=kind, payload=payload, generation=generation))

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            command = await self._queue.get()
            try:
                if command.generation is not None and command.generation != self._generation:
                    logger.debug("Discarding stale %s event", command.kind)
                    result = None
                else:
                    result = await self._handle(command)
            except Exception as exc:
                if command.done is not None:
                    if not command.done.done():
                        command.done.set_exception(exc)
                else:
                    logger.exception("Chat update %s failed", command.kind)
            else:
                if command.done is not None and not command.done.done():
                    command.done.set_result(result)
            finally:
                self._queue.task_done()

    async def _handle(self, command: _Command) -> Any:
        kind = command.kind
        if kind == _INTENT_CONNECT:
            return await self._do_connect(*command.payload)
        if kind == _INTENT_DISCONNECT:
            return await self._teardown()
        if kind == _INTENT_SEND:
            return await self._do_send(command.payload)
        if kind == CONNECT:
            return await self._on_transport_connected()
        if kind == DISCONNECT:
            return self._on_transport_disconnected()
        if kind == _HISTORY_LOADED:
            return self._on_history_loaded(command.payload)
        if kind == _TRANSPORT_FAILED:
            return self._on_transport_failed(command.payload)
        if kind == _CONNECT_TIMEOUT:
            return self._on_connect_timeout()
        if kind in _LIVE_EVENTS:
            return self._on_live_event(kind, command.payload)
        logger.warning("Unknown chat update %s", kind)
        return None

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def _do_connect(self, room_id: str, user_id: str, username: str) -> None:
        if (
            self.room_id == room_id
            and self.user_id == user_id
            and self.state != ConnectionState.DISCONNECTED
        ):
            logger.debug("Already in game %s", room_id)
            return

        if self.room_id != room_id:
            self.draft = None
        await self._teardown()

        self._generation += 1
        generation = self._generation
        self.room_id = room_id
        self.user_id = user_id
        self.username = username
        self.degraded = False
        self.history_error = None
        self._reconciler.reset()
        self._history_ready = False
        self._buffered = []

        transport = self._transport_factory(room_id, user_id)
        for event in INBOUND_EVENTS:
            transport.on(event, self._listener(event, generation))
        self._transport = transport

        logger.info("Joining game %s as %s", room_id, user_id)
        self._set_state(ConnectionState.CONNECTING)
        self._notify(EVENT_MESSAGES, self.messages)

        self._connect_task = asyncio.create_task(self._open_transport(transport, generation))
        self._history_task = asyncio.create_task(self._load_history(room_id, generation))
        self._watchdog = asyncio.create_task(self._watch_connect(generation))

    def _listener(self, event: str, generation: int) -> Callable[..., None]:
        def listener(*args: Any) -> None:
            self._post(event, generation, args[0] if args else None)
        return listener

    async def _open_transport(self, transport: RealtimeTransport, generation: int) -> None:
        try:
            await transport.connect()
        except TransportError as exc:
            logger.warning("Chat transport failed to connect: %s", exc)
            self._post(_TRANSPORT_FAILED, generation, str(exc))

    async def _load_history(self, room_id: str, generation: int) -> None:
        try:
            result = await self._history_loader.load_history(room_id)
        except Exception as exc:
            # Live events wait on this result, so a loader bug must still post one
            logger.exception("History load for game %s raised", room_id)
            result = HistoryLoad(error=str(exc) or exc.__class__.__name__)
        self._post(_HISTORY_LOADED, generation, result)

    async def _watch_connect(self, generation: int) -> None:
        await asyncio.sleep(self.connect_timeout)
        self._post(_CONNECT_TIMEOUT, generation)

    async def _teardown(self) -> None:
        if self._transport is None and self.room_id is None:
            return

        # Anything still queued for the old room is now stale
        self._generation += 1
        room_id = self.room_id

        tasks = [
            task for task in (self._watchdog, self._history_task, self._connect_task, *self._relay_tasks)
            if task is not None and not task.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._watchdog = self._history_task = self._connect_task = None
        self._relay_tasks.clear()

        transport, self._transport = self._transport, None
        if transport is not None:
            transport.remove_all_listeners()
            if transport.connected and room_id is not None:
                try:
                    await transport.emit(LEAVE_GAME, room_id)
                except TransportError as exc:
                    logger.warning("leave-game for %s not delivered: %s", room_id, exc)
            try:
                await transport.disconnect()
            except TransportError as exc:
                logger.warning("Transport close for %s failed: %s", room_id, exc)

        logger.info("Left game %s", room_id)
        self.room_id = None
        self.user_id = None
        self.username = ""
        self._history_ready = False
        self._buffered = []
        self._set_state(ConnectionState.DISCONNECTED)

    async def _on_transport_connected(self) -> None:
        if self._watchdog is not None and not self._watchdog.done():
            self._watchdog.cancel()
        if self.degraded:
            self.degraded = False
            self._notify(EVENT_DEGRADED, False)
        self._set_state(ConnectionState.CONNECTED)

        # Room membership does not survive a transport reset, so join on every ack
        if self._transport is not None and self.room_id is not None:
            try:
                await self._transport.emit(JOIN_GAME, self.room_id)
            except TransportError as exc:
                logger.warning("join-game for %s not delivered: %s", self.room_id, exc)

    def _on_transport_disconnected(self) -> None:
        if self.state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            logger.info("Chat transport lost for game %s, reconnecting", self.room_id)
            self._set_state(ConnectionState.RECONNECTING)

    def _on_transport_failed(self, reason: str) -> None:
        if self._watchdog is not None and not self._watchdog.done():
            self._watchdog.cancel()
        self.degraded = True
        self._notify(EVENT_DEGRADED, reason)
        self._set_state(ConnectionState.DISCONNECTED)

    def _on_connect_timeout(self) -> None:
        if self.state == ConnectionState.CONNECTED:
            return
        logger.warning(
            "No connection to game %s after %ss", self.room_id, self.connect_timeout
        )
        self.degraded = True
        self._notify(EVENT_DEGRADED, "connect timeout")

    # =========================================================================
    # Messages
    # =========================================================================

    def _on_history_loaded(self, result: HistoryLoad) -> None:
        if result.error is not None:
            self.history_error = result.error
            self._notify(EVENT_HISTORY_ERROR, result.error)

        self._reconciler.seed_history(result.messages)
        self._history_ready = True

        buffered, self._buffered = self._buffered, []
        for event, payload in buffered:
            self._apply_guarded(event, payload)
        if buffered:
            logger.debug("Replayed %d buffered event(s) for game %s", len(buffered), self.room_id)

        self._notify(EVENT_MESSAGES, self.messages)

    def _on_live_event(self, event: str, payload: Any) -> None:
        if not self._history_ready:
            self._buffered.append((event, payload))
            return
        if self._apply_guarded(event, payload):
            self._notify(EVENT_MESSAGES, self.messages)

    def _apply_guarded(self, event: str, payload: Any) -> bool:
        """``_apply_live`` that drops a failing event instead of raising."""
        try:
            return self._apply_live(event, payload)
        except Exception:
            logger.warning("Dropping %s event that failed to apply: %r", event, payload, exc_info=True)
            return False

    def _apply_live(self, event: str, payload: Any) -> bool:
        """Apply one live event to the list; returns True if the list changed."""
        now = self._clock()
        if event == NEW_MESSAGE:
            try:
                message = Message.model_validate(with_default_room(payload, self.room_id))
            except ValidationError as exc:
                logger.warning("Dropping malformed new-message payload %r: %s", payload, exc)
                return False
            if message.room_id != self.room_id:
                logger.debug("Ignoring message for game %s", message.room_id)
                return False
            outcome = self._reconciler.apply_broadcast(message, now)
            return outcome != ReconcileOutcome.DUPLICATE

        notice = self._presence.notice(
            event, payload, self.room_id, now, self._reconciler.last_timestamp
        )
        if notice is None:
            return False
        self._reconciler.append_system(notice)
        return True

    async def _do_send(self, text: Optional[str]) -> Optional[Message]:
        body = (text or "").strip()
        if not body:
            return None

        if self.state != ConnectionState.CONNECTED or self.room_id is None or self.user_id is None:
            logger.info("Send rejected while %s; keeping draft", self.state.value)
            self.draft = body
            return None
        if len(body) > self.settings.max_message_length:
            logger.warning(
                "Send rejected: %d chars exceeds limit of %d",
                len(body), self.settings.max_message_length,
            )
            self.draft = body
            return None

        message = Message(
            id=new_optimistic_id(),
            room_id=self.room_id,
            sender_id=self.user_id,
            sender_name=self.username,
            body=body,
            timestamp=self._clock(),
            kind=MessageKind.TEXT,
        )
        self._reconciler.add_optimistic(message)
        self.draft = None
        self._notify(EVENT_MESSAGES, self.messages)

        if self._relay is not None:
            task = asyncio.create_task(self._relay_send(message))
            self._relay_tasks.add(task)
            task.add_done_callback(self._relay_tasks.discard)
        elif self._transport is not None:
            try:
                await self._transport.emit(
                    SEND_MESSAGE, SendMessagePayload.from_message(message).to_wire()
                )
            except TransportError as exc:
                logger.warning("send-message %s not delivered: %s", message.id, exc)
        return message

    async def _relay_send(self, message: Message) -> None:
        assert self._relay is not None
        try:
            await self._relay.post_message(
                message.room_id, message.sender_id, message.body, message.kind.value
            )
        except (httpx.HTTPError, BackendError) as exc:
            logger.warning("POST /message for %s failed: %s", message.id, exc)

    # =========================================================================
    # Subscribers
    # =========================================================================

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        logger.debug("Chat state %s -> %s", self.state.value, state.value)
        self.state = state
        self._notify(EVENT_STATE, state)

    def _notify(self, kind: str, data: Any) -> None:
        event = SessionEvent(kind=kind, room_id=self.room_id, data=data)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Chat subscriber failed on %s event", kind)
