"""Tests for SocketIOTransport over a mocked socketio.AsyncClient."""
from unittest.mock import AsyncMock, MagicMock

import pytest
from socketio import exceptions as sio_exceptions

from pickup.chat.transport import (
    INBOUND_EVENTS,
    SocketIOTransport,
    TransportError,
    socketio_transport_factory,
)
from pickup.config import RealtimeSettings


@pytest.fixture
def sio():
    client = MagicMock()
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.emit = AsyncMock()
    client.connected = False
    return client


def handlers(sio):
    return {c.args[0]: c.args[1] for c in sio.on.call_args_list}


class TestSocketIOTransport:
    def test_registers_every_inbound_event(self, sio):
        SocketIOTransport("http://rt.test", client=sio)
        assert set(handlers(sio)) == set(INBOUND_EVENTS)

    @pytest.mark.asyncio
    async def test_forwards_events_to_listener(self, sio):
        transport = SocketIOTransport("http://rt.test", client=sio)
        received = []
        transport.on("new-message", received.append)

        await handlers(sio)["new-message"]({"_id": "m1"})

        assert received == [{"_id": "m1"}]

    @pytest.mark.asyncio
    async def test_removed_listeners_get_nothing(self, sio):
        transport = SocketIOTransport("http://rt.test", client=sio)
        received = []
        transport.on("user-joined", received.append)
        transport.remove_all_listeners()

        await handlers(sio)["user-joined"]({"username": "Ann"})

        assert received == []

    @pytest.mark.asyncio
    async def test_async_listener_is_awaited(self, sio):
        transport = SocketIOTransport("http://rt.test", client=sio)
        listener = AsyncMock()
        transport.on("connect", listener)

        await handlers(sio)["connect"]()

        listener.assert_awaited_once_with()

    @pytest.mark.asyncio
    async def test_connect_passes_auth_and_path(self, sio):
        settings = RealtimeSettings(socketio_path="/ws/socket.io")
        transport = SocketIOTransport("http://rt.test", auth={"userId": "u1"}, settings=settings, client=sio)

        await transport.connect()

        sio.connect.assert_awaited_once_with(
            "http://rt.test", auth={"userId": "u1"}, socketio_path="/ws/socket.io", retry=True
        )

    @pytest.mark.asyncio
    async def test_connect_failure_maps_to_transport_error(self, sio):
        sio.connect.side_effect = sio_exceptions.ConnectionError("refused")
        transport = SocketIOTransport("http://rt.test", client=sio)

        with pytest.raises(TransportError):
            await transport.connect()

    @pytest.mark.asyncio
    async def test_emit_failure_maps_to_transport_error(self, sio):
        sio.emit.side_effect = sio_exceptions.BadNamespaceError("/ is not connected")
        transport = SocketIOTransport("http://rt.test", client=sio)

        with pytest.raises(TransportError):
            await transport.emit("join-game", "game-1")

    @pytest.mark.asyncio
    async def test_emit_and_disconnect(self, sio):
        transport = SocketIOTransport("http://rt.test", client=sio)

        await transport.emit("join-game", "game-1")
        await transport.disconnect()

        sio.emit.assert_awaited_once_with("join-game", "game-1")
        sio.disconnect.assert_awaited_once()


class TestTransportFactory:
    def test_builds_fresh_transport_with_identity(self):
        factory = socketio_transport_factory("http://rt.test")
        first = factory("game-1", "u1")
        second = factory("game-2", "u1")

        assert first is not second
        assert first.auth == {"userId": "u1", "gameId": "game-1"}
        assert second.url == "http://rt.test"
        assert not first.connected
