"""Tests for the relay server."""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from task_crafter.api.models import Task
from task_crafter.config import Config
from task_crafter.relay.client import encode_update
from task_crafter.relay.server import create_relay_app
from task_crafter.websocket.connection_manager import ConnectionManager

NOW = datetime(2025, 3, 14, 12, 0, tzinfo=UTC)


@pytest.fixture
def relay_client() -> TestClient:
    """Create test client for a relay app."""
    config = Config(client_origins=["http://localhost:3000"], relay_queue_size=10)
    return TestClient(create_relay_app(config))


def update_message(task_id: str = "t1") -> str:
    return encode_update("update", Task(id=task_id, title="Relayed", created_at=NOW), NOW)


def test_update_is_forwarded_to_other_sessions_only(relay_client: TestClient) -> None:
    """Test that the sender does not get its own update back."""
    message = update_message()

    with relay_client:
        with (
            relay_client.websocket_connect("/ws") as sender,
            relay_client.websocket_connect("/ws") as first,
            relay_client.websocket_connect("/ws") as second,
        ):
            sender.send_text(message)

            assert first.receive_text() == message
            assert second.receive_text() == message

            sender.send_text("ping")
            assert sender.receive_text() == "pong"


def test_non_update_messages_are_not_forwarded(relay_client: TestClient) -> None:
    with relay_client:
        with (
            relay_client.websocket_connect("/ws") as sender,
            relay_client.websocket_connect("/ws") as receiver,
        ):
            sender.send_text("hello")
            sender.send_text('{"event": "chat", "data": {}}')
            sender.send_text(update_message("t2"))

            assert receiver.receive_text() == update_message("t2")


def test_message_is_forwarded_verbatim(relay_client: TestClient) -> None:
    """Test that the relay does not re-serialize payloads."""
    raw = '{"event":"taskUpdate","data":{"type":"add","task":{"id":"x"},"extra":[1, 2]}}'

    with relay_client:
        with (
            relay_client.websocket_connect("/ws") as sender,
            relay_client.websocket_connect("/ws") as receiver,
        ):
            sender.send_text(raw)

            assert receiver.receive_text() == raw


def test_allowed_origin_connects(relay_client: TestClient) -> None:
    with relay_client:
        with relay_client.websocket_connect(
            "/ws", headers={"origin": "http://localhost:3000"}
        ) as session:
            session.send_text("ping")
            assert session.receive_text() == "pong"


def test_unknown_origin_is_rejected(relay_client: TestClient) -> None:
    with relay_client:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with relay_client.websocket_connect("/ws", headers={"origin": "http://evil.example"}):
                pass

    assert exc_info.value.code == 1008


def test_health_reports_connections(relay_client: TestClient) -> None:
    with relay_client:
        assert relay_client.get("/health").json() == {"status": "ok", "connections": 0}

        with relay_client.websocket_connect("/ws") as session:
            session.send_text("ping")
            session.receive_text()
            assert relay_client.get("/health").json()["connections"] == 1


class RecordingSocket:
    """Minimal websocket double for ConnectionManager."""

    def __init__(self) -> None:
        self.sent: list[str] = []

    async def accept(self) -> None:
        pass

    async def send_text(self, message: str) -> None:
        self.sent.append(message)


class StalledSocket(RecordingSocket):
    """Receiver that stops reading until released."""

    def __init__(self) -> None:
        super().__init__()
        self.attempted: list[str] = []
        self.release = asyncio.Event()

    async def send_text(self, message: str) -> None:
        self.attempted.append(message)
        await self.release.wait()
        await super().send_text(message)


async def wait_until(condition: Callable[[], bool], timeout: float = 2.0) -> None:
    async def poll() -> None:
        while not condition():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


@pytest.mark.asyncio
async def test_slow_receiver_does_not_stall_others() -> None:
    """Test that a full queue drops messages for its peer only."""
    manager = ConnectionManager(queue_size=1)
    slow, healthy, sender = StalledSocket(), RecordingSocket(), RecordingSocket()
    for websocket in (slow, healthy, sender):
        await manager.connect(websocket)
    try:
        assert manager.broadcast("m1", exclude=sender) == 2
        await wait_until(lambda: slow.attempted == ["m1"] and healthy.sent == ["m1"])

        assert manager.broadcast("m2", exclude=sender) == 2
        await wait_until(lambda: healthy.sent == ["m1", "m2"])

        assert manager.broadcast("m3", exclude=sender) == 1
        await wait_until(lambda: healthy.sent == ["m1", "m2", "m3"])
        assert slow.sent == []
        assert sender.sent == []

        slow.release.set()
        await wait_until(lambda: slow.sent == ["m1", "m2"])
        await asyncio.sleep(0.05)
        assert slow.sent == ["m1", "m2"]
        assert len(manager.active_connections) == 3
    finally:
        await manager.close_all()
