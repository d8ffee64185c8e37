"""
In-memory registry of live WebSocket connections.

Each connection gets a bounded outbound queue drained by its own writer
task. Broadcasting only enqueues, so a slow client never holds up the
producer or any other client; when a queue is full the message is dropped
for that connection alone. Nothing is buffered for clients that are not
connected.
"""
import asyncio
import logging
from typing import Dict, Any, Optional, List

from fastapi import WebSocket

from ..core.config import settings

logger = logging.getLogger(__name__)


class ClientConnection:
    def __init__(self, websocket: WebSocket, user_id: str, user_type: str,
                 session_id: Optional[str] = None, queue_size: int = 100):
        self.websocket = websocket
        self.user_id = user_id
        self.user_type = user_type
        self.session_id = session_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.dropped = 0
        self.closed = False
        self._writer: Optional[asyncio.Task] = None

    @property
    def is_admin(self) -> bool:
        return self.user_type == "admin"

    def start(self):
        self._writer = asyncio.create_task(self._write_loop(), name=f"ws-writer-{self.user_id}")

    def offer(self, message: Dict[str, Any]) -> bool:
        if self.closed:
            return False
        try:
            self.queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"Outbound queue full for {self.user_type} {self.user_id}, dropped {message.get('type')} message"
            )
            return False

    async def _write_loop(self):
        while True:
            message = await self.queue.get()
            try:
                await self.websocket.send_json(message)
            except Exception as e:
                logger.info(f"Send to {self.user_type} {self.user_id} failed, closing writer: {e}")
                self.closed = True
                self._discard_pending()
                return
            finally:
                self.queue.task_done()

    def _discard_pending(self):
        while not self.queue.empty():
            self.queue.get_nowait()
            self.queue.task_done()

    async def drain(self):
        """Wait until everything queued so far has been written"""
        await self.queue.join()

    async def close(self):
        self.closed = True
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
        self._writer = None


class ConnectionManager:
    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = queue_size or settings.ws_outbound_queue_size
        self._connections: Dict[int, ClientConnection] = {}

    def register(self, websocket: WebSocket, user_id: str, user_type: str,
                 session_id: Optional[str] = None) -> ClientConnection:
        connection = ClientConnection(websocket, user_id, user_type, session_id, self.queue_size)
        connection.start()
        self._connections[id(websocket)] = connection
        logger.info(f"WebSocket registered: {user_type} {user_id} (session {session_id})")
        return connection

    async def unregister(self, connection: ClientConnection):
        self._connections.pop(id(connection.websocket), None)
        await connection.close()
        logger.info(f"WebSocket unregistered: {connection.user_type} {connection.user_id}")

    def connections(self) -> List[ClientConnection]:
        return list(self._connections.values())

    def admins(self) -> List[ClientConnection]:
        return [c for c in self.connections() if c.is_admin]

    def broadcast_to_admins(self, message_type: str, data: Dict[str, Any]) -> int:
        """Queue a message for every connected admin; returns how many accepted it"""
        message = {"type": message_type, "data": data}
        delivered = 0
        for connection in self.admins():
            if connection.offer(message):
                delivered += 1
        return delivered

    def send_to_session(self, session_id: str, message_type: str, data: Dict[str, Any]) -> int:
        """Queue a message for the student connection(s) bound to a session"""
        message = {"type": message_type, "data": data}
        delivered = 0
        for connection in self.connections():
            if connection.session_id == session_id and not connection.is_admin:
                if connection.offer(message):
                    delivered += 1
        return delivered

    async def drain(self):
        for connection in self.connections():
            await connection.drain()

    async def close_all(self):
        for connection in self.connections():
            await self.unregister(connection)


manager = ConnectionManager()
