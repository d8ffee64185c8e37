from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_
from sqlalchemy.orm import joinedload
from typing import Optional, List, Dict, Any, Tuple
import logging
import random
import uuid

from ..models.exam_session import ExamSession
from ..models.hall_ticket import HallTicket
from ..models.question import Question
from ..models.user import User
from ..models.security_incident import SecurityIncident
from ..core.cache import acached, EXAM_STATS_KEY
from ..core.config import settings
from ..core.exceptions import (
    HallTicketInvalid, NoQuestionsAvailable, NoQuestionsAssigned, SessionNotFound,
)
from ..proctoring.state_machine import ExamSessionMachine, SessionState, SessionStatus

logger = logging.getLogger(__name__)

LIVE_STATUSES = (SessionStatus.IN_PROGRESS.value, SessionStatus.PAUSED.value)


class ExamSessionService:
    def __init__(self, db: AsyncSession, rng: Optional[random.Random] = None):
        self.db = db
        self.rng = rng or random.Random()

    async def get_hall_ticket(self, reference: str) -> Optional[HallTicket]:
        """Look a hall ticket up by row id or by its printed hall-ticket number"""
        result = await self.db.execute(
            select(HallTicket).filter(
                or_(HallTicket.id == reference, HallTicket.hall_ticket_id == reference)
            )
        )
        return result.scalars().first()

    async def ensure_student(self, hall_ticket: HallTicket) -> User:
        student_id = f"student_{hall_ticket.roll_number}"
        result = await self.db.execute(select(User).filter(User.id == student_id))
        student = result.scalars().first()
        if student is not None:
            return student

        name_parts = (hall_ticket.student_name or "").split(" ", 1)
        student = User(
            id=student_id,
            email=hall_ticket.student_email,
            first_name=name_parts[0] or None,
            last_name=name_parts[1] if len(name_parts) > 1 else None,
            role="student",
        )
        self.db.add(student)
        await self.db.flush()
        logger.info(f"Created student user {student_id} from hall ticket {hall_ticket.hall_ticket_id}")
        return student

    async def find_existing_session(self, hall_ticket_id: str, student_id: str) -> Optional[ExamSession]:
        result = await self.db.execute(
            select(ExamSession)
            .filter(ExamSession.hall_ticket_id == hall_ticket_id, ExamSession.student_id == student_id)
            .order_by(ExamSession.created_at.desc())
        )
        return result.scalars().first()

    async def select_question_ids(self, exam_name: str, count: int) -> List[str]:
        result = await self.db.execute(select(Question.id).filter(Question.exam_name == exam_name))
        ids = list(result.scalars().all())

        if not ids:
            logger.warning(f"No questions found for exam '{exam_name}', falling back to the full question bank")
            result = await self.db.execute(select(Question.id))
            ids = list(result.scalars().all())

        if not ids:
            raise NoQuestionsAvailable("No questions available for this exam. Please contact administrator.")

        return self.rng.sample(ids, min(count or settings.default_total_questions, len(ids)))

    async def create_session(self, hall_ticket_reference: str) -> Tuple[ExamSession, bool]:
        """
        Start an exam for a hall ticket. Returns ``(session, created)``; an
        existing session for the same student and hall ticket is returned as is.
        """
        hall_ticket = await self.get_hall_ticket(hall_ticket_reference)
        if hall_ticket is None:
            raise HallTicketInvalid("Invalid hall ticket")
        if not hall_ticket.is_active:
            raise HallTicketInvalid("Hall ticket is not active")

        student = await self.ensure_student(hall_ticket)

        existing = await self.find_existing_session(hall_ticket.id, student.id)
        if existing is not None:
            await self.db.commit()
            logger.info(f"Reusing exam session {existing.id} for {student.id}")
            return existing, False

        question_ids = await self.select_question_ids(hall_ticket.exam_name, hall_ticket.total_questions)

        state = SessionState(
            id=str(uuid.uuid4()),
            hall_ticket_id=hall_ticket.id,
            student_id=student.id,
            question_ids=question_ids,
        )
        duration = hall_ticket.duration or settings.default_exam_duration_minutes
        ExamSessionMachine(state).start(time_budget_seconds=duration * 60)

        db_session = ExamSession(id=state.id, hall_ticket_id=state.hall_ticket_id, student_id=state.student_id)
        state.apply_to(db_session)
        self.db.add(db_session)
        await self.db.commit()
        await self.db.refresh(db_session)

        logger.info(
            f"Exam session {db_session.id} started for {student.id}: "
            f"{len(question_ids)} questions, {duration} minutes"
        )
        return db_session, True

    async def get_session(self, session_id: str) -> ExamSession:
        result = await self.db.execute(select(ExamSession).filter(ExamSession.id == session_id))
        db_session = result.scalars().first()
        if db_session is None:
            raise SessionNotFound(f"Exam session {session_id} not found")
        return db_session

    async def get_session_questions(self, session_id: str) -> List[Question]:
        db_session = await self.get_session(session_id)
        question_ids = list(db_session.question_ids or [])
        if not question_ids:
            raise NoQuestionsAssigned("No questions assigned to this exam session")

        result = await self.db.execute(select(Question).filter(Question.id.in_(question_ids)))
        by_id = {q.id: q for q in result.scalars().all()}
        return [by_id[qid] for qid in question_ids if qid in by_id]

    async def list_sessions(self) -> List[ExamSession]:
        result = await self.db.execute(select(ExamSession).order_by(ExamSession.created_at.desc()))
        return list(result.scalars().all())

    async def list_active_sessions(self) -> List[Dict[str, Any]]:
        result = await self.db.execute(
            select(ExamSession)
            .options(joinedload(ExamSession.hall_ticket))
            .filter(ExamSession.status.in_(LIVE_STATUSES))
            .order_by(ExamSession.start_time.desc())
        )
        sessions = []
        for db_session in result.scalars().all():
            total = len(db_session.question_ids or [])
            answered = len(db_session.answers or {})
            ticket = db_session.hall_ticket
            sessions.append({
                "id": db_session.id,
                "student_id": db_session.student_id,
                "student_name": ticket.student_name if ticket else None,
                "roll_number": ticket.roll_number if ticket else None,
                "exam_name": ticket.exam_name if ticket else None,
                "status": db_session.status,
                "current_question": db_session.current_question,
                "total_questions": total,
                "answered": answered,
                "progress": progress_percent(db_session),
                "time_remaining": db_session.time_remaining,
                "violation_count": db_session.violation_count or 0,
                "start_time": db_session.start_time,
            })
        return sessions

    async def get_exam_stats(self) -> Dict[str, Any]:
        return await _exam_stats(self.db)


def progress_percent(db_session: ExamSession) -> float:
    total = len(db_session.question_ids or [])
    if total == 0:
        return 0.0
    return round(len(db_session.answers or {}) * 100.0 / total, 1)


@acached(ttl=settings.exam_stats_cache_ttl, key=EXAM_STATS_KEY)
async def _exam_stats(db: AsyncSession) -> Dict[str, Any]:
    total_result = await db.execute(select(func.count(ExamSession.id)))
    alerts_result = await db.execute(
        select(func.count(SecurityIncident.id)).filter(SecurityIncident.is_resolved.is_(False))
    )
    live_result = await db.execute(select(ExamSession).filter(ExamSession.status.in_(LIVE_STATUSES)))
    live_sessions = list(live_result.scalars().all())

    average_progress = 0.0
    if live_sessions:
        average_progress = round(sum(progress_percent(s) for s in live_sessions) / len(live_sessions), 1)

    return {
        "active_students": len(live_sessions),
        "total_sessions": total_result.scalar() or 0,
        "unresolved_alerts": alerts_result.scalar() or 0,
        "average_progress": average_progress,
    }
