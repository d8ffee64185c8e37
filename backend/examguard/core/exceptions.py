from fastapi import status


class ProctoringError(Exception):
    """Base error of the exam engine; carries the HTTP status it maps to"""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "PROCTORING_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SessionNotFound(ProctoringError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "SESSION_NOT_FOUND"


class HallTicketInvalid(ProctoringError):
    error_code = "INVALID_HALL_TICKET"


class NoQuestionsAvailable(ProctoringError):
    error_code = "NO_QUESTIONS_AVAILABLE"


class NoQuestionsAssigned(ProctoringError):
    error_code = "NO_QUESTIONS_ASSIGNED"


class InvalidQuestionIndex(ProctoringError):
    error_code = "INVALID_QUESTION_INDEX"


class InvalidSessionState(ProctoringError):
    status_code = status.HTTP_409_CONFLICT
    error_code = "INVALID_SESSION_STATE"


class IncidentNotFound(ProctoringError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "INCIDENT_NOT_FOUND"


class IncidentAlreadyResolved(ProctoringError):
    status_code = status.HTTP_409_CONFLICT
    error_code = "INCIDENT_ALREADY_RESOLVED"


class SessionPersistenceError(ProctoringError):
    """A session state change could not be written; never swallowed"""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "SESSION_PERSISTENCE_FAILED"


class IncidentTypeNotReportable(ProctoringError):
    """Browser violations must arrive as browser events so they count against the session"""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = "INCIDENT_TYPE_NOT_REPORTABLE"


class IncidentPersistenceError(ProctoringError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "INCIDENT_PERSISTENCE_FAILED"


class IncidentRateLimited(ProctoringError):
    """Not a failure; the incident was dropped by the per-type rate limit"""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "INCIDENT_RATE_LIMITED"
