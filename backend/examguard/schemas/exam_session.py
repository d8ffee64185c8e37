from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict, Any


class ExamSessionCreate(BaseModel):
    hall_ticket_id: str = Field(..., min_length=1)
    # accepted for compatibility with older clients; the budget always comes from the hall ticket
    time_remaining: Optional[int] = None


class ExamSessionResponse(BaseModel):
    id: str
    hall_ticket_id: str
    student_id: str
    status: str
    current_question: int
    question_ids: List[str] = []
    answers: Dict[str, str] = {}
    time_remaining: Optional[int] = None
    violation_count: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    submit_reason: Optional[str] = None
    is_verified: bool = False

    class Config:
        from_attributes = True


class ExamSessionStarted(ExamSessionResponse):
    require_fullscreen: bool = True


class SessionActionResponse(BaseModel):
    """Session snapshot plus the client-side effects of the action that produced it"""
    session: ExamSessionResponse
    warning: Optional[str] = None
    block_default: bool = False
    require_fullscreen: bool = False


class AnswerSubmit(BaseModel):
    option: str = Field(..., pattern=r"^[A-Z]$")
    question_index: Optional[int] = Field(None, ge=1)


class NavigateRequest(BaseModel):
    question_index: int = Field(..., ge=1)


class QuestionPublic(BaseModel):
    """Question as shown to the student; never carries the correct answer"""
    id: str
    question_text: str
    options: Any
    question_type: str
    subject: Optional[str] = None
    topic: Optional[str] = None
    marks: int = 1

    class Config:
        from_attributes = True


class SessionQuestions(BaseModel):
    session_id: str
    questions: List[QuestionPublic]


class ActiveSessionInfo(BaseModel):
    id: str
    student_id: str
    student_name: Optional[str] = None
    roll_number: Optional[str] = None
    exam_name: Optional[str] = None
    status: str
    current_question: int
    total_questions: int
    answered: int
    progress: float
    time_remaining: Optional[int] = None
    violation_count: int = 0
    start_time: Optional[datetime] = None


class ExamStats(BaseModel):
    active_students: int
    total_sessions: int
    unresolved_alerts: int
    average_progress: float
