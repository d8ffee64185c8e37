from sqlalchemy import Column, String, DateTime, Integer, Text, JSON
import uuid
from ..core.database import Base
from ..utils.timezone import utc_now


class Question(Base):
    __tablename__ = "questions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    exam_name = Column(String, nullable=False, index=True)
    question_text = Column(Text, nullable=False)
    options = Column(JSON, nullable=False)
    correct_answer = Column(String, nullable=False)
    question_type = Column(String, nullable=False, default="multiple_choice")
    difficulty = Column(String, default="medium")
    subject = Column(String, nullable=False, default="general")
    topic = Column(String, nullable=False, default="general")
    marks = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)
