from sqlalchemy import Column, String, DateTime, Integer, Boolean, ForeignKey, JSON
from sqlalchemy.orm import relationship
import uuid
from ..core.database import Base
from ..utils.timezone import utc_now


class ExamSession(Base):
    __tablename__ = "exam_sessions"

    id = Column(String, primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    hall_ticket_id = Column(String, ForeignKey("hall_tickets.id"), nullable=False)
    student_id = Column(String, ForeignKey("users.id"), nullable=False)
    status = Column(String, nullable=False, default="not_started", index=True)
    start_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)
    current_question = Column(Integer, default=1)
    answers = Column(JSON, default=dict)
    question_ids = Column(JSON, default=list)
    time_remaining = Column(Integer, nullable=True)   # seconds
    violation_count = Column(Integer, default=0)
    submit_reason = Column(String, nullable=True)
    is_verified = Column(Boolean, default=False)
    verification_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    hall_ticket = relationship("HallTicket", back_populates="exam_sessions")
    student = relationship("User", back_populates="exam_sessions")
    incidents = relationship("SecurityIncident", back_populates="session")
    monitoring_logs = relationship("MonitoringLog", back_populates="session")

    def __repr__(self):
        return f"<ExamSession {self.id} {self.status}>"
