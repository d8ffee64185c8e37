"""
Incident sink: persists violations that pass the rate-limit gate and hands
each stored incident to the realtime fan-out.

Severity is fixed by the incident type. ``store`` raises when the write
fails; ``record`` logs the failure and the incident is lost. Broadcast
failures never affect the stored record.
"""
import asyncio
import logging
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Optional, Dict, Any, Callable, Tuple

from sqlalchemy import select
from sqlalchemy.orm import joinedload

from ..core.exceptions import ProctoringError, IncidentPersistenceError, IncidentTypeNotReportable
from ..models.exam_session import ExamSession
from ..models.security_incident import SecurityIncident
from ..services.incident_service import IncidentService
from ..schemas.incident import SecurityIncidentResponse
from ..utils.timezone import utc_now
from .classifier import ViolationEvent, INCIDENT_SEVERITY, BROWSER_VIOLATIONS

logger = logging.getLogger(__name__)


class IncidentSink:
    def __init__(self, session_factory, fanout, clock: Callable[[], datetime] = utc_now):
        self.session_factory = session_factory
        self.fanout = fanout
        self.clock = clock
        # the count-then-insert gate must not interleave for the same (session, type)
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    async def record(
        self,
        violation: ViolationEvent,
        student_name: Optional[str] = None,
        roll_number: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Persist and broadcast one violation; returns the incident payload or None when dropped"""
        try:
            return await self.store(violation, student_name, roll_number)
        except IncidentPersistenceError as e:
            logger.error(e.message, exc_info=True)
            return None

    async def record_client_report(
        self,
        violation: ViolationEvent,
        student_name: Optional[str] = None,
        roll_number: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Incident classified by the exam client; browser violations are refused here"""
        if violation.kind in BROWSER_VIOLATIONS:
            raise IncidentTypeNotReportable(
                f"{violation.kind.value} must be sent as a browser event, not reported as an incident"
            )
        return await self.store(violation, student_name, roll_number)

    async def store(
        self,
        violation: ViolationEvent,
        student_name: Optional[str] = None,
        roll_number: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Like ``record`` but a failed write raises ``IncidentPersistenceError``; None still means rate-limited"""
        violation = replace(violation, severity=INCIDENT_SEVERITY.get(violation.kind, violation.severity))
        kind = violation.kind.value
        try:
            async with self._locks[(violation.session_id, kind)]:
                async with self.session_factory() as db:
                    service = IncidentService(db, clock=self.clock)
                    incident = await service.create_incident(
                        session_id=violation.session_id,
                        incident_type=kind,
                        severity=violation.severity.value,
                        description=violation.description,
                        metadata=violation.metadata,
                    )
                    if incident is None:
                        return None

                    if student_name is None or roll_number is None:
                        student_name, roll_number = await self._student_display(db, violation.session_id,
                                                                                student_name, roll_number)
        except ProctoringError:
            raise
        except Exception as e:
            raise IncidentPersistenceError(
                f"Failed to persist {kind} incident for session {violation.session_id}: {e}"
            ) from e

        payload = self.incident_payload(incident, student_name, roll_number)
        self._broadcast(payload)
        return payload

    async def _student_display(self, db, session_id: str, student_name, roll_number):
        result = await db.execute(
            select(ExamSession)
            .options(joinedload(ExamSession.hall_ticket))
            .filter(ExamSession.id == session_id)
        )
        session = result.scalars().first()
        if session is not None and session.hall_ticket is not None:
            student_name = student_name or session.hall_ticket.student_name
            roll_number = roll_number or session.hall_ticket.roll_number
        return student_name, roll_number

    @staticmethod
    def incident_payload(incident: SecurityIncident, student_name: Optional[str],
                         roll_number: Optional[str]) -> Dict[str, Any]:
        payload = SecurityIncidentResponse.model_validate(incident).model_dump(mode="json")
        payload.update({
            "studentName": student_name,
            "rollNumber": roll_number,
            "violationType": incident.incident_type,
        })
        return payload

    def _broadcast(self, payload: Dict[str, Any]):
        try:
            self.fanout.broadcast_to_admins("security_incident", payload)
        except Exception as e:
            logger.warning(f"Incident broadcast failed for session {payload.get('session_id')}: {e}")

    def forget_session(self, session_id: str):
        for key in [k for k in self._locks if k[0] == session_id]:
            self._locks.pop(key, None)
