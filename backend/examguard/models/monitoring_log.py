from sqlalchemy import Column, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
import uuid
from ..core.database import Base
from ..utils.timezone import utc_now


class MonitoringLog(Base):
    __tablename__ = "monitoring_logs"

    id = Column(String, primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    session_id = Column(String, ForeignKey("exam_sessions.id"), nullable=False, index=True)
    timestamp = Column(DateTime, default=utc_now)
    event_type = Column(String, nullable=False, index=True)
    event_data = Column(JSON, nullable=True)

    session = relationship("ExamSession", back_populates="monitoring_logs")
