"""Reconnecting client for the update relay."""

import asyncio
import contextlib
import enum
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, Protocol

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from task_crafter.api.models import Task, TaskUpdateMessage, UpdateKind

logger = logging.getLogger(__name__)

TASK_UPDATE_EVENT = "taskUpdate"


class RelayConnection(Protocol):
    """The part of a websocket client connection the relay client uses."""

    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[RelayConnection]]
UpdateSubscriber = Callable[[TaskUpdateMessage], Any]


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


async def websocket_connector(url: str) -> RelayConnection:
    """Open a websocket connection to the relay server."""
    return await websockets.connect(url)


def encode_update(kind: UpdateKind, task: Task, timestamp: datetime) -> str:
    """Build the wire text for a task change."""
    message = TaskUpdateMessage(type=kind, task=task, timestamp=timestamp)
    return json.dumps(
        {"event": TASK_UPDATE_EVENT, "data": message.model_dump(mode="json", by_alias=True)}
    )


def decode_update(raw: str | bytes) -> TaskUpdateMessage | None:
    """Parse wire text; returns None for other events.

    Raises:
        ValueError: If the text is not a well-formed task update
    """
    envelope = json.loads(raw)
    if not isinstance(envelope, dict):
        raise ValueError("Relay message is not an object")
    if envelope.get("event") != TASK_UPDATE_EVENT:
        return None
    return TaskUpdateMessage.model_validate(envelope.get("data"))


class RelayClient:
    """Background relay connection with a disconnected/connecting/connected state machine.

    ``notify`` never blocks and never raises: while connected it queues the
    message for the sender coroutine, otherwise the message is dropped.
    Received updates only move ``last_update`` and are handed to subscribers.
    """

    def __init__(
        self,
        url: str,
        *,
        reconnect_attempts: int = 5,
        reconnect_delay: float = 1.0,
        queue_size: int = 100,
        connector: Connector = websocket_connector,
    ) -> None:
        """Initialize client; nothing connects until start() is awaited.

        Args:
            url: Relay websocket URL
            reconnect_attempts: Consecutive failed connects tolerated before giving up
            reconnect_delay: Fixed delay in seconds between attempts
            queue_size: Maximum unsent notifications held while connected
            connector: Coroutine opening a connection (injectable for tests)
        """
        self._url = url
        self._reconnect_attempts = reconnect_attempts
        self._reconnect_delay = reconnect_delay
        self._queue_size = queue_size
        self._connector = connector
        self._state = ConnectionState.DISCONNECTED
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._runner: asyncio.Task[None] | None = None
        self._connection: RelayConnection | None = None
        self._subscribers: list[UpdateSubscriber] = []
        self._closing = False
        self.last_update: datetime | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def subscribe(self, callback: UpdateSubscriber) -> None:
        """Register a callback invoked with each received task update."""
        self._subscribers.append(callback)

    def notify(self, kind: UpdateKind, task: Task) -> None:
        """Send a change notification if connected; drop it otherwise."""
        if not self.is_connected or self._loop is None:
            logger.debug(f"[RelayClient] Not connected, dropping {kind} for task {task.id}")
            return
        message = encode_update(kind, task, datetime.now(UTC))
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._enqueue(message)
        else:
            self._loop.call_soon_threadsafe(self._enqueue, message)

    async def start(self) -> None:
        """Start the background connection loop."""
        if self._runner is not None:
            return
        self._closing = False
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        self._loop = asyncio.get_running_loop()
        self._runner = asyncio.create_task(self._run(), name="relay-client")
        logger.info(f"[RelayClient] Starting relay client for {self._url}")

    async def stop(self) -> None:
        """Stop the connection loop, abandoning any pending reconnect."""
        self._closing = True
        runner, self._runner = self._runner, None
        if runner is not None:
            runner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await runner
        await self._close_connection()
        self._state = ConnectionState.DISCONNECTED
        logger.info("[RelayClient] Stopped")

    async def wait_stopped(self) -> None:
        """Wait until the connection loop exits (e.g. after giving up)."""
        if self._runner is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._runner

    async def _run(self) -> None:
        failures = 0
        while not self._closing:
            self._set_state(ConnectionState.CONNECTING)
            try:
                connection = await self._connector(self._url)
            except (OSError, WebSocketException) as e:
                self._set_state(ConnectionState.DISCONNECTED)
                failures += 1
                if failures > self._reconnect_attempts:
                    logger.error(
                        f"[RelayClient] Giving up after {failures} failed connection attempts: {e}"
                    )
                    return
                logger.warning(
                    f"[RelayClient] Connection failed ({failures}/{self._reconnect_attempts}), "
                    f"retrying in {self._reconnect_delay}s: {e}"
                )
                await asyncio.sleep(self._reconnect_delay)
                continue

            failures = 0
            self._connection = connection
            self._set_state(ConnectionState.CONNECTED)
            try:
                await self._pump(connection)
            finally:
                await self._close_connection()
                self._set_state(ConnectionState.DISCONNECTED)
                self._drop_pending()

            if not self._closing:
                await asyncio.sleep(self._reconnect_delay)

    async def _pump(self, connection: RelayConnection) -> None:
        """Run sender and receiver until either ends."""
        receiver = asyncio.create_task(self._receive_loop(connection))
        sender = asyncio.create_task(self._send_loop(connection))
        try:
            done, _ = await asyncio.wait({receiver, sender}, return_when=asyncio.FIRST_COMPLETED)
            for finished in done:
                error = finished.exception()
                if error is not None:
                    logger.error(f"[RelayClient] Connection loop failed: {error}", exc_info=error)
        finally:
            for pending in (receiver, sender):
                pending.cancel()
            await asyncio.gather(receiver, sender, return_exceptions=True)

    async def _receive_loop(self, connection: RelayConnection) -> None:
        while True:
            try:
                raw = await connection.recv()
            except ConnectionClosed:
                logger.info("[RelayClient] Relay connection closed")
                return
            try:
                message = decode_update(raw)
            except (ValueError, ValidationError) as e:
                logger.warning(f"[RelayClient] Ignoring malformed relay message: {e}")
                continue
            if message is None:
                continue
            self.last_update = message.timestamp
            logger.debug(f"[RelayClient] Received {message.type} for task {message.task.id}")
            for callback in list(self._subscribers):
                try:
                    callback(message)
                except Exception as e:
                    logger.error(f"[RelayClient] Subscriber error: {e}", exc_info=True)

    async def _send_loop(self, connection: RelayConnection) -> None:
        while True:
            message = await self._queue.get()
            try:
                await connection.send(message)
            except ConnectionClosed:
                logger.info("[RelayClient] Relay connection closed while sending, message dropped")
                return

    async def _close_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                await connection.close()
            except Exception as e:
                logger.debug(f"[RelayClient] Error closing connection: {e}")

    def _enqueue(self, message: str) -> None:
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.debug("[RelayClient] Send queue full, dropping notification")

    def _drop_pending(self) -> None:
        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            dropped += 1
        if dropped:
            logger.info(f"[RelayClient] Dropped {dropped} unsent notifications")

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug(f"[RelayClient] {self._state.value} -> {state.value}")
            self._state = state
