"""WebSocket connection management for the relay."""

import asyncio
import logging
from dataclasses import dataclass, field

from fastapi import WebSocket

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Peer:
    """A connected session and its outbound queue."""

    websocket: WebSocket
    queue: asyncio.Queue[str]
    writer: asyncio.Task[None] | None = field(default=None)


class ConnectionManager:
    """Tracks relay sessions and fans messages out through per-connection queues.

    Sends never await a receiver: each peer has a bounded queue drained by its
    own writer task, and a full queue drops the message for that peer only.
    """

    def __init__(self, queue_size: int = 100) -> None:
        """Initialize connection manager with no peers.

        Args:
            queue_size: Maximum pending messages per connection
        """
        self._queue_size = queue_size
        self._peers: list[Peer] = []

    @property
    def active_connections(self) -> list[WebSocket]:
        return [peer.websocket for peer in self._peers]

    async def connect(self, websocket: WebSocket) -> None:
        """Accept and register a new WebSocket connection.

        Args:
            websocket: WebSocket connection to register
        """
        await websocket.accept()
        peer = Peer(websocket=websocket, queue=asyncio.Queue(maxsize=self._queue_size))
        peer.writer = asyncio.create_task(self._write_loop(peer))
        self._peers.append(peer)
        logger.info(f"[ConnectionManager] Client connected (total: {len(self._peers)})")

    def disconnect(self, websocket: WebSocket) -> None:
        """Remove a WebSocket connection and stop its writer.

        Args:
            websocket: WebSocket connection to remove
        """
        peer = self._find(websocket)
        if peer is None:
            return
        self._peers.remove(peer)
        if peer.writer is not None and peer.writer is not asyncio.current_task():
            peer.writer.cancel()
        logger.info(f"[ConnectionManager] Client disconnected (total: {len(self._peers)})")

    def broadcast(self, message: str, exclude: WebSocket | None = None) -> int:
        """Queue message for every connection except the sender.

        Args:
            message: Raw text to forward unchanged
            exclude: Originating connection, which does not get its own message

        Returns:
            Number of connections the message was queued for
        """
        delivered = 0
        for peer in list(self._peers):
            if peer.websocket is exclude:
                continue
            if self._enqueue(peer, message):
                delivered += 1
        logger.debug(f"[ConnectionManager] Broadcast queued for {delivered} clients")
        return delivered

    def send_personal(self, message: str, websocket: WebSocket) -> None:
        """Queue message for one connection.

        Args:
            message: Text to send
            websocket: Target WebSocket connection
        """
        peer = self._find(websocket)
        if peer is not None:
            self._enqueue(peer, message)

    async def close_all(self) -> None:
        """Stop every writer task (used on shutdown)."""
        writers = [peer.writer for peer in self._peers if peer.writer is not None]
        self._peers.clear()
        for writer in writers:
            writer.cancel()
        await asyncio.gather(*writers, return_exceptions=True)

    def _find(self, websocket: WebSocket) -> Peer | None:
        for peer in self._peers:
            if peer.websocket is websocket:
                return peer
        return None

    def _enqueue(self, peer: Peer, message: str) -> bool:
        try:
            peer.queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            logger.warning("[ConnectionManager] Client send queue full, dropping message")
            return False

    async def _write_loop(self, peer: Peer) -> None:
        while True:
            message = await peer.queue.get()
            try:
                await peer.websocket.send_text(message)
            except Exception as e:
                logger.warning(f"[ConnectionManager] Failed to send to client: {e}")
                self.disconnect(peer.websocket)
                return
