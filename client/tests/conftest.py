"""Shared test fixtures and fakes for the chat client tests."""
import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
from fastapi import FastAPI

from pickup.api.client import BackendClient
from pickup.chat.history import HistoryLoad, MessageHistoryLoader
from pickup.chat.schemas import Message
from pickup.chat.session import ChatSession
from pickup.chat.transport import RealtimeTransport, TransportError
from pickup.config import ChatSettings


def ts(seconds: float) -> datetime:
    """UTC datetime for an epoch offset; keeps scenario timestamps readable."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def make_message(
    message_id: str,
    seconds: float,
    body: str = "hi",
    *,
    room_id: str = "game-1",
    sender_id: str = "u2",
    sender_name: str = "Bo",
    **extra: Any,
) -> Message:
    return Message(
        id=message_id,
        room_id=room_id,
        sender_id=sender_id,
        sender_name=sender_name,
        body=body,
        timestamp=ts(seconds),
        **extra,
    )


def wire(message_id: str, seconds: float, body: str = "hi", **fields: Any) -> Dict[str, Any]:
    """A ``new-message`` payload as the backend broadcasts it."""
    payload = {
        "_id": message_id,
        "gameId": "game-1",
        "userId": "u2",
        "username": "Bo",
        "message": body,
        "timestamp": ts(seconds).isoformat(),
        "messageType": "text",
    }
    payload.update(fields)
    return payload


class FakeClock:
    """Settable replacement for ``utcnow``."""

    def __init__(self, seconds: float = 150) -> None:
        self.now = ts(seconds)

    def set(self, seconds: float) -> None:
        self.now = ts(seconds)

    def __call__(self) -> datetime:
        return self.now


class FakeTransport(RealtimeTransport):
    """In-memory transport; tests drive server events with ``deliver``/``ack``/``drop``."""

    def __init__(
        self,
        room_id: str,
        user_id: str,
        *,
        auto_ack: bool = True,
        fail: bool = False,
        hang: bool = False,
    ) -> None:
        super().__init__()
        self.room_id = room_id
        self.user_id = user_id
        self.auto_ack = auto_ack
        self.fail = fail
        self.hang = hang
        self.emitted: List[Tuple[str, Any]] = []
        self.closed = False
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def connect(self) -> None:
        if self.fail:
            raise TransportError("connection refused")
        if self.hang:
            # An unreachable server with retry enabled never returns
            await asyncio.Event().wait()
        if self.auto_ack:
            await self.ack()

    async def ack(self) -> None:
        self._connected = True
        await self.dispatch("connect")

    async def drop(self) -> None:
        self._connected = False
        await self.dispatch("disconnect")

    async def disconnect(self) -> None:
        self._connected = False
        self.closed = True

    async def emit(self, event: str, data: Any = None) -> None:
        if not self._connected:
            raise TransportError("not connected")
        self.emitted.append((event, data))

    async def deliver(self, event: str, data: Any) -> None:
        await self.dispatch(event, data)

    def sent(self, event: str) -> List[Any]:
        return [data for name, data in self.emitted if name == event]


class TransportRecorder:
    """Transport factory that keeps every transport it builds."""

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.created: List[FakeTransport] = []

    def __call__(self, room_id: str, user_id: str) -> FakeTransport:
        transport = FakeTransport(room_id, user_id, **self.kwargs)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


class StaticHistoryLoader(MessageHistoryLoader):
    """History loader returning canned results, optionally held behind a gate."""

    def __init__(
        self,
        messages: Optional[List[Message]] = None,
        *,
        error: Optional[str] = None,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.messages = messages or []
        self.error = error
        self.gate = gate
        self.calls: List[str] = []

    async def load_history(self, room_id: str) -> HistoryLoad:
        self.calls.append(room_id)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            return HistoryLoad(error=self.error)
        return HistoryLoad(messages=[m for m in self.messages if m.room_id == room_id])


async def settle(session: ChatSession) -> None:
    """Let spawned tasks run one step and wait for queued updates."""
    for _ in range(3):
        await asyncio.sleep(0)
    if session._queue is not None:
        await session._queue.join()


def backend_client(app: FastAPI) -> BackendClient:
    """BackendClient wired straight to a FastAPI stub backend."""
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://backend.test")
    return BackendClient(http=http)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transports():
    return TransportRecorder()


@pytest.fixture
def make_session(transports, clock):
    """Build a ChatSession over fake transports and a canned history."""

    def factory(
        history: Optional[List[Message]] = None,
        *,
        loader: Optional[MessageHistoryLoader] = None,
        recorder: Optional[TransportRecorder] = None,
        **kwargs: Any,
    ) -> ChatSession:
        kwargs.setdefault("settings", ChatSettings(match_window_seconds=10))
        kwargs.setdefault("clock", clock)
        return ChatSession(
            recorder or transports,
            loader or StaticHistoryLoader(history),
            **kwargs,
        )

    return factory
