from sqlalchemy import Column, String, Text, DateTime, Boolean, ForeignKey, JSON
from sqlalchemy.orm import relationship
import uuid
from ..core.database import Base
from ..utils.timezone import utc_now


class SecurityIncident(Base):
    __tablename__ = "security_incidents"

    id = Column(String, primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    session_id = Column(String, ForeignKey("exam_sessions.id"), nullable=False, index=True)
    incident_type = Column(String, nullable=False, index=True)
    severity = Column(String, nullable=False, default="medium")   # low | medium | high | critical
    description = Column(Text, nullable=False)
    incident_metadata = Column(JSON, nullable=True)
    snapshot_url = Column(String, nullable=True)
    is_resolved = Column(Boolean, nullable=False, default=False)
    resolved_by = Column(String, ForeignKey("users.id"), nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now, index=True)

    session = relationship("ExamSession", back_populates="incidents")

    def __repr__(self):
        return f"<SecurityIncident {self.incident_type} for session {self.session_id}>"
