"""
WebSocket protocol.

The first message on a connection must be ``auth``; after that each message
is routed by its ``type``. Student messages about an exam go to the session
supervisor; relays are fanned out to every connected admin.
"""
import json
import logging
from typing import Optional, Dict, Any

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from sqlalchemy import select

from ..core.exceptions import ProctoringError
from ..models.exam_session import ExamSession
from ..proctoring.classifier import ViolationEvent
from ..schemas.realtime import (
    ClientMessage, AuthMessage, FaceSampleData, BrowserEventData,
    ClientViolationData, VideoSnapshotData,
)
from ..services.monitoring_service import record_monitoring_event
from .manager import ConnectionManager, ClientConnection

logger = logging.getLogger(__name__)


class RealtimeHandler:
    def __init__(self, manager: ConnectionManager, supervisor, session_factory):
        self.manager = manager
        self.supervisor = supervisor
        self.session_factory = session_factory
        self._routes = {
            "face_sample": self.on_face_sample,
            "browser_event": self.on_browser_event,
            "security_violation": self.on_client_violation,
            "face_violation": self.on_client_violation,
            "student_status_update": self.on_status_relay,
            "student_status": self.on_status_relay,
            "video_snapshot": self.on_video_snapshot,
            "face_detection_update": self.on_face_detection_update,
            "ping": self.on_ping,
        }

    async def serve(self, websocket: WebSocket):
        await websocket.accept()
        connection: Optional[ClientConnection] = None
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = ClientMessage.model_validate(json.loads(raw))
                except (ValueError, ValidationError) as e:
                    await self._reply_error(websocket, connection, "INVALID_MESSAGE", f"Malformed message: {e}")
                    continue

                if connection is None:
                    connection = await self._authenticate(websocket, raw, message)
                    continue

                await self.dispatch(connection, message)
        except WebSocketDisconnect:
            pass
        finally:
            if connection is not None:
                await self.manager.unregister(connection)
                if not connection.is_admin and connection.session_id:
                    await self.supervisor.connection_lost(connection.session_id)

    async def _authenticate(self, websocket: WebSocket, raw: str, message: ClientMessage) -> Optional[ClientConnection]:
        if message.type != "auth":
            await self._reply_error(websocket, None, "AUTH_REQUIRED", "First message must be auth")
            return None
        try:
            auth = AuthMessage.model_validate(json.loads(raw))
        except ValidationError as e:
            await self._reply_error(websocket, None, "INVALID_AUTH", f"Invalid auth message: {e.errors()[0]['msg']}")
            return None

        connection = self.manager.register(websocket, auth.user_id, auth.user_type, auth.session_id)
        connection.offer({"type": "auth_ok", "data": {
            "userId": auth.user_id,
            "userType": auth.user_type,
            "sessionId": auth.session_id,
        }})
        if not connection.is_admin and auth.session_id:
            await self.supervisor.student_reconnected(auth.session_id)
        return connection

    async def _reply_error(self, websocket: WebSocket, connection: Optional[ClientConnection],
                           code: str, detail: str):
        message = {"type": "error", "data": {"error": code, "message": detail}}
        if connection is not None:
            connection.offer(message)
        else:
            await websocket.send_json(message)

    async def dispatch(self, connection: ClientConnection, message: ClientMessage):
        handler = self._routes.get(message.type)
        if handler is None:
            connection.offer({"type": "error", "data": {
                "error": "UNSUPPORTED_MESSAGE",
                "message": f"Unsupported message type: {message.type}",
            }})
            return
        try:
            await handler(connection, message)
        except ValidationError as e:
            connection.offer({"type": "error", "data": {"error": "INVALID_MESSAGE", "message": str(e)}})
        except ProctoringError as e:
            connection.offer({"type": "error", "data": {"error": e.error_code, "message": e.message}})
        except Exception as e:
            logger.error(f"WebSocket {message.type} from {connection.user_id} failed: {e}", exc_info=True)
            connection.offer({"type": "error", "data": {"error": "INTERNAL_ERROR", "message": "Message could not be processed"}})

    def _student_session(self, connection: ClientConnection, message: ClientMessage) -> Optional[str]:
        if connection.is_admin:
            connection.offer({"type": "error", "data": {
                "error": "FORBIDDEN", "message": "Only students can report exam events",
            }})
            return None
        session_id = message.session_id or connection.session_id
        if not session_id:
            connection.offer({"type": "error", "data": {
                "error": "SESSION_REQUIRED", "message": "sessionId is required",
            }})
            return None
        if connection.session_id is None:
            connection.session_id = session_id
        return session_id

    async def on_face_sample(self, connection: ClientConnection, message: ClientMessage):
        session_id = self._student_session(connection, message)
        if session_id is None:
            return
        sample = FaceSampleData.model_validate(message.data or {})
        await self.supervisor.face_sample(session_id, sample.to_sample())

    async def on_browser_event(self, connection: ClientConnection, message: ClientMessage):
        session_id = self._student_session(connection, message)
        if session_id is None:
            return
        event = BrowserEventData.model_validate(message.data or {})
        result = await self.supervisor.browser_event(session_id, event.to_event())
        if result.block_default:
            connection.offer({"type": "block_default", "data": {"eventType": event.event_type.value, "key": event.key}})

    async def on_client_violation(self, connection: ClientConnection, message: ClientMessage):
        if connection.is_admin:
            logger.error(f"Unauthorized: admin {connection.user_id} tried to report a violation")
            connection.offer({"type": "error", "data": {
                "error": "FORBIDDEN", "message": "Only students can report violations",
            }})
            return

        data = ClientViolationData.model_validate(message.data or {})
        if connection.session_id is None:
            connection.session_id = data.session_id
        if data.session_id != connection.session_id:
            logger.error(f"Unauthorized: student {connection.user_id} reported a violation "
                         f"for session {data.session_id}")
            connection.offer({"type": "error", "data": {
                "error": "FORBIDDEN", "message": "Students can only report violations for their own session",
            }})
            return
        if not await self._session_exists(data.session_id):
            logger.error(f"Session {data.session_id} not found")
            connection.offer({"type": "error", "data": {
                "error": "SESSION_NOT_FOUND", "message": f"Session {data.session_id} not found",
            }})
            return

        await self.supervisor.sink.record_client_report(
            ViolationEvent(
                session_id=data.session_id,
                kind=data.incident_type,
                severity=data.severity,
                description=data.description,
                metadata=data.metadata,
            ),
            student_name=data.student_name,
            roll_number=data.roll_number,
        )

    async def on_status_relay(self, connection: ClientConnection, message: ClientMessage):
        data: Dict[str, Any] = (message.payload if message.type == "student_status_update" else message.data) or {}
        self.manager.broadcast_to_admins("student_status", data)

    async def on_video_snapshot(self, connection: ClientConnection, message: ClientMessage):
        data = VideoSnapshotData.model_validate(message.data or {})
        self.manager.broadcast_to_admins("video_feed", data.model_dump(by_alias=True))
        await record_monitoring_event(self.session_factory, data.session_id, "video_snapshot", {
            "studentId": data.student_id,
            "timestamp": data.timestamp,
        })

    async def on_face_detection_update(self, connection: ClientConnection, message: ClientMessage):
        session_id = message.session_id or connection.session_id
        if session_id:
            await record_monitoring_event(self.session_factory, session_id, "face_detected", message.payload)

    async def on_ping(self, connection: ClientConnection, message: ClientMessage):
        connection.offer({"type": "pong", "data": {}})

    async def _session_exists(self, session_id: str) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(select(ExamSession.id).filter(ExamSession.id == session_id))
            return result.scalars().first() is not None
