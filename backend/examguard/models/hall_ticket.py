from sqlalchemy import Column, String, DateTime, Integer, Boolean, Text, ForeignKey
from sqlalchemy.orm import relationship
import uuid
from ..core.database import Base
from ..utils.timezone import utc_now


class HallTicket(Base):
    """Exam authorisation issued by the admin workflow; read-only for the exam engine"""
    __tablename__ = "hall_tickets"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    hall_ticket_id = Column(String, unique=True, nullable=False, index=True)
    exam_name = Column(String, nullable=False)
    exam_date = Column(DateTime, nullable=False)
    duration = Column(Integer, nullable=False)   # minutes
    total_questions = Column(Integer, nullable=False)
    roll_number = Column(String, nullable=False)
    student_name = Column(String, nullable=False)
    student_email = Column(String, nullable=False)
    qr_code_data = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    exam_sessions = relationship("ExamSession", back_populates="hall_ticket")
