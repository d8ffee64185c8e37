"""
Exam session lifecycle.

``ExamSessionMachine`` holds the in-memory state of one session and applies
the allowed transitions::

    not_started -> in_progress
    in_progress -> paused | submitted
    paused      -> in_progress

``submitted`` is the terminal status written by this engine. ``completed`` is
accepted when reading older rows and is treated exactly like ``submitted``.
Any mutation that is not allowed from the current status raises
``InvalidSessionState`` and leaves the state untouched.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Callable

from ..core.exceptions import InvalidSessionState, InvalidQuestionIndex
from ..utils.timezone import utc_now


class SessionStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    SUBMITTED = "submitted"


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.SUBMITTED})

ALLOWED_TRANSITIONS = {
    SessionStatus.NOT_STARTED: {SessionStatus.IN_PROGRESS},
    SessionStatus.IN_PROGRESS: {SessionStatus.PAUSED, SessionStatus.SUBMITTED},
    SessionStatus.PAUSED: {SessionStatus.IN_PROGRESS},
    SessionStatus.COMPLETED: set(),
    SessionStatus.SUBMITTED: set(),
}


class SubmitReason(str, Enum):
    MANUAL = "manual"
    TIME_EXPIRED = "time_expired"
    VIOLATIONS = "violations"


def is_terminal(status) -> bool:
    return SessionStatus(status) in TERMINAL_STATUSES


@dataclass
class SessionState:
    id: str
    hall_ticket_id: str
    student_id: str
    status: SessionStatus = SessionStatus.NOT_STARTED
    question_ids: List[str] = field(default_factory=list)
    current_question: int = 1
    answers: Dict[str, str] = field(default_factory=dict)
    time_remaining: int = 0
    violation_count: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    submit_reason: Optional[SubmitReason] = None

    @classmethod
    def from_model(cls, db_session) -> "SessionState":
        return cls(
            id=db_session.id,
            hall_ticket_id=db_session.hall_ticket_id,
            student_id=db_session.student_id,
            status=SessionStatus(db_session.status),
            question_ids=list(db_session.question_ids or []),
            current_question=db_session.current_question or 1,
            answers=dict(db_session.answers or {}),
            time_remaining=db_session.time_remaining or 0,
            violation_count=db_session.violation_count or 0,
            start_time=db_session.start_time,
            end_time=db_session.end_time,
            submit_reason=SubmitReason(db_session.submit_reason) if db_session.submit_reason else None,
        )

    def apply_to(self, db_session):
        """Copy the mutable fields onto an ORM row; JSON columns get fresh objects so the change is detected"""
        db_session.status = self.status.value
        db_session.current_question = self.current_question
        db_session.answers = dict(self.answers)
        db_session.question_ids = list(self.question_ids)
        db_session.time_remaining = self.time_remaining
        db_session.violation_count = self.violation_count
        db_session.start_time = self.start_time
        db_session.end_time = self.end_time
        db_session.submit_reason = self.submit_reason.value if self.submit_reason else None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "hall_ticket_id": self.hall_ticket_id,
            "student_id": self.student_id,
            "status": self.status.value,
            "current_question": self.current_question,
            "question_ids": list(self.question_ids),
            "answers": dict(self.answers),
            "time_remaining": self.time_remaining,
            "violation_count": self.violation_count,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "submit_reason": self.submit_reason.value if self.submit_reason else None,
        }


class ExamSessionMachine:
    def __init__(self, state: SessionState, clock: Callable[[], datetime] = utc_now):
        self.state = state
        self.clock = clock

    @property
    def status(self) -> SessionStatus:
        return self.state.status

    def _transition(self, target: SessionStatus):
        if target not in ALLOWED_TRANSITIONS[self.state.status]:
            raise InvalidSessionState(
                f"Cannot move session {self.state.id} from {self.state.status.value} to {target.value}"
            )
        self.state.status = target

    def _require_in_progress(self, action: str):
        if self.state.status != SessionStatus.IN_PROGRESS:
            raise InvalidSessionState(
                f"Cannot {action} while session is {self.state.status.value}"
            )

    def start(self, time_budget_seconds: int):
        self._transition(SessionStatus.IN_PROGRESS)
        self.state.time_remaining = max(0, int(time_budget_seconds))
        self.state.current_question = 1
        self.state.start_time = self.clock()

    def pause(self):
        self._transition(SessionStatus.PAUSED)

    def resume(self):
        self._transition(SessionStatus.IN_PROGRESS)

    def record_answer(self, option: str, question_index: Optional[int] = None):
        """Store the option for the current question (or ``question_index``); last write wins"""
        self._require_in_progress("answer")
        index = question_index if question_index is not None else self.state.current_question
        self._check_index(index)
        self.state.current_question = index

        question_id = self.state.question_ids[self.state.current_question - 1]
        self.state.answers[question_id] = option

    def navigate(self, question_index: int):
        self._require_in_progress("navigate")
        self._check_index(question_index)
        self.state.current_question = question_index

    def _check_index(self, question_index: int):
        total = len(self.state.question_ids)
        if not 1 <= question_index <= total:
            raise InvalidQuestionIndex(
                f"Question index {question_index} is outside 1..{total}"
            )

    def tick(self, seconds: int = 1) -> bool:
        """Consume countdown time; returns True once the budget is exhausted"""
        if self.state.status != SessionStatus.IN_PROGRESS:
            return False
        self.state.time_remaining = max(0, self.state.time_remaining - seconds)
        return self.state.time_remaining == 0

    def record_browser_violation(self, violation_count: int):
        self._require_in_progress("record a browser violation")
        self.state.violation_count = violation_count

    def submit(self, reason: SubmitReason = SubmitReason.MANUAL) -> bool:
        """
        Finalize the session. Returns False when it was already finalized,
        in which case nothing changes.
        """
        if self.state.is_terminal:
            return False
        self._transition(SessionStatus.SUBMITTED)
        self.state.end_time = self.clock()
        self.state.submit_reason = SubmitReason(reason)
        return True

    def snapshot(self) -> Dict[str, Any]:
        return self.state.snapshot()
