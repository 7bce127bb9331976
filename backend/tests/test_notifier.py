"""
Tests for the websocket notifier and the /ws channel.
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from postcraft.main import app
from postcraft.services import notifier
from postcraft.services.notifier import ConnectionManager


class FakeSocket:
    def __init__(self, broken: bool = False):
        self.broken = broken
        self.accepted = False
        self.sent: list = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, payload):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(payload)


class TestConnectionManager:

    async def test_absent_user_is_not_an_error(self):
        assert await ConnectionManager().notify("nobody", notifier.event(notifier.CONTENT_UPDATE, {})) is False

    async def test_delivers_to_every_socket_of_the_user(self):
        manager = ConnectionManager()
        first, second, other = FakeSocket(), FakeSocket(), FakeSocket()
        await manager.connect("u1", first)
        await manager.connect("u1", second)
        await manager.connect("u2", other)

        delivered = await manager.notify("u1", notifier.event(notifier.PUBLISH_UPDATE, {"id": 3}))

        assert delivered is True
        assert first.accepted and second.accepted
        assert first.sent == second.sent == [{"type": "PUBLISH_UPDATE", "data": {"id": 3}}]
        assert other.sent == []

    async def test_failing_socket_is_dropped(self):
        manager = ConnectionManager()
        good, bad = FakeSocket(), FakeSocket(broken=True)
        await manager.connect("u1", good)
        await manager.connect("u1", bad)

        assert await manager.notify("u1", notifier.event(notifier.VIDEO_UPDATE, {})) is True
        assert manager.connection_count("u1") == 1

        await manager.disconnect("u1", good)
        assert manager.connection_count("u1") == 0


async def test_notify_never_raises():
    class Exploding:
        async def notify(self, user_id, event):
            raise RuntimeError("boom")

    notifier.set_notifier(Exploding())
    assert await notifier.notify("u1", notifier.CONTENT_UPDATE, {"sessionId": 1}) is False


class TestWebSocketRoute:

    @pytest.fixture(autouse=True)
    def live_manager(self):
        manager = ConnectionManager()
        notifier.set_notifier(manager)
        yield manager
        notifier.set_notifier(None)

    def test_ping_pong(self, live_manager):
        client = TestClient(app)
        with client.websocket_connect("/ws?user_id=u1") as ws:
            ws.send_text("ping")
            assert ws.receive_text() == "pong"
            assert live_manager.connection_count("u1") == 1

    def test_missing_user_id_is_rejected(self):
        client = TestClient(app)
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws") as ws:
                ws.receive_text()
