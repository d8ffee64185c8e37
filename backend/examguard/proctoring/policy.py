from abc import ABC, abstractmethod
from enum import Enum

from ..core.config import settings


class PolicyAction(str, Enum):
    NONE = "none"
    PAUSE = "paused"
    WARN = "warning"
    AUTO_SUBMIT = "auto_submitted"


class EscalationPolicy(ABC):
    """Maps the browser violation counter onto a session action"""

    @abstractmethod
    def decide(self, violation_count: int) -> PolicyAction:
        ...

    @abstractmethod
    def describe(self) -> dict:
        ...


class DefaultEscalationPolicy(EscalationPolicy):
    """
    Pause on the first violation, warn on every further one and
    auto-submit once the counter reaches ``submit_at``.
    """

    def __init__(self, pause_at: int = 1, submit_at: int = 3):
        if submit_at <= pause_at:
            raise ValueError("submit_at must be greater than pause_at")
        self.pause_at = pause_at
        self.submit_at = submit_at

    def decide(self, violation_count: int) -> PolicyAction:
        if violation_count >= self.submit_at:
            return PolicyAction.AUTO_SUBMIT
        if violation_count == self.pause_at:
            return PolicyAction.PAUSE
        if violation_count > self.pause_at:
            return PolicyAction.WARN
        return PolicyAction.NONE

    def describe(self) -> dict:
        return {"pauseAt": self.pause_at, "autoSubmitAt": self.submit_at}


def policy_from_settings() -> EscalationPolicy:
    return DefaultEscalationPolicy(
        pause_at=settings.pause_violation_threshold,
        submit_at=settings.auto_submit_violation_threshold,
    )
