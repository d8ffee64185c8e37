from .user import User
from .hall_ticket import HallTicket
from .question import Question
from .exam_session import ExamSession
from .security_incident import SecurityIncident
from .monitoring_log import MonitoringLog

__all__ = [
    "User",
    "HallTicket",
    "Question",
    "ExamSession",
    "SecurityIncident",
    "MonitoringLog",
]
