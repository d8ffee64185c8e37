"""
Violation classifier.

Turns raw signals into at most one ViolationEvent and keeps the per-session
rolling counters that drive escalation. Two independent inputs:

* face samples from the external detector, roughly once per second
* browser security events (fullscreen, visibility, blur, keyboard)

Only browser events move ``violation_count``; the escalation policy reads
that counter alone, so face violations never pause or submit an exam.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any

from ..utils.timezone import utc_now


class ViolationKind(str, Enum):
    MULTIPLE_FACES = "multiple_faces"
    LOOKING_AWAY = "looking_away"
    LOOKING_AWAY_REPEATED = "looking_away_repeated"
    FULLSCREEN_EXIT = "fullscreen_exit"
    TAB_SWITCH = "tab_switch"
    WINDOW_BLUR = "window_blur"
    KEY_VIOLATION = "key_violation"
    NETWORK_DISCONNECT = "network_disconnect"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


INCIDENT_SEVERITY = {
    ViolationKind.MULTIPLE_FACES: Severity.CRITICAL,
    ViolationKind.LOOKING_AWAY_REPEATED: Severity.HIGH,
    ViolationKind.LOOKING_AWAY: Severity.MEDIUM,
    ViolationKind.FULLSCREEN_EXIT: Severity.MEDIUM,
    ViolationKind.TAB_SWITCH: Severity.MEDIUM,
    ViolationKind.WINDOW_BLUR: Severity.MEDIUM,
    ViolationKind.KEY_VIOLATION: Severity.MEDIUM,
    ViolationKind.NETWORK_DISCONNECT: Severity.LOW,
}

# counted against the session; only the browser-event path may record them
BROWSER_VIOLATIONS = frozenset({
    ViolationKind.FULLSCREEN_EXIT,
    ViolationKind.TAB_SWITCH,
    ViolationKind.WINDOW_BLUR,
    ViolationKind.KEY_VIOLATION,
})


class BrowserEventType(str, Enum):
    FULLSCREEN_CHANGE = "fullscreen_change"
    VISIBILITY_CHANGE = "visibility_change"
    WINDOW_BLUR = "window_blur"
    KEYDOWN = "keydown"
    KEYUP = "keyup"
    KEYPRESS = "keypress"


BLOCKED_KEYS = frozenset({
    "Escape",
    "F11",          # toggle fullscreen
    "F12",          # dev tools
    "F5",           # refresh
    "Alt+Tab",
    "Ctrl+Shift+I",
    "Ctrl+Shift+C",
    "Ctrl+Shift+J",
    "Ctrl+U",
    "Ctrl+R",
    "Ctrl+N",
    "Ctrl+T",
    "Ctrl+W",
})

# Escape never reaches the browser; clients cancel it in the capture phase of keydown/keyup/keypress.
CAPTURE_PHASE_KEYS = frozenset({"Escape"})

WARNING_MESSAGES = {
    ViolationKind.FULLSCREEN_EXIT: "Please stay in fullscreen mode during the exam!",
    ViolationKind.TAB_SWITCH: "Switching tabs is not allowed during the exam!",
    ViolationKind.WINDOW_BLUR: "Please keep the exam window focused!",
    ViolationKind.KEY_VIOLATION: "Restricted key combination detected!",
}

LOOK_AWAY_WARNING = "Please look at the camera during the exam."
LOOK_AWAY_FINAL_WARNING = "FINAL WARNING: Keep your eyes on the screen. Admin has been notified."
MULTIPLE_FACES_WARNING = "Multiple faces detected! Only the exam taker should be visible."


@dataclass(frozen=True)
class FaceSample:
    face_detected: bool
    multiple_faces: bool = False
    looking_away: bool = False
    confidence: float = 0.0


@dataclass(frozen=True)
class BrowserEvent:
    event_type: BrowserEventType
    is_fullscreen: Optional[bool] = None
    hidden: Optional[bool] = None
    key: Optional[str] = None
    ctrl_key: bool = False
    alt_key: bool = False
    shift_key: bool = False


@dataclass
class ViolationEvent:
    session_id: str
    kind: ViolationKind
    severity: Severity
    description: str
    occurred_at: datetime = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ClassifierCounters:
    look_away_count: int = 0
    multiple_face_count: int = 0
    violation_count: int = 0
    last_status_broadcast_at: Optional[float] = None


@dataclass
class FaceOutcome:
    violation: Optional[ViolationEvent] = None
    warning: Optional[str] = None
    status: Optional[Dict[str, Any]] = None


@dataclass
class BrowserOutcome:
    violation: Optional[ViolationEvent] = None
    warning: Optional[str] = None
    # the client must cancel the default browser action for this event
    block_default: bool = False


def normalize_key(key: str) -> str:
    if len(key) == 1:
        return key.upper()
    if key == "Esc":
        return "Escape"
    return key


def key_combo(key: str, ctrl: bool = False, alt: bool = False, shift: bool = False) -> str:
    parts = []
    if ctrl:
        parts.append("Ctrl")
    if alt:
        parts.append("Alt")
    if shift:
        parts.append("Shift")
    parts.append(normalize_key(key))
    return "+".join(parts)


def is_blocked_key(key: str, ctrl: bool = False, alt: bool = False, shift: bool = False) -> bool:
    return normalize_key(key) in BLOCKED_KEYS or key_combo(key, ctrl, alt, shift) in BLOCKED_KEYS


class ViolationClassifier:
    """Stateless rules; the counters live with the session that owns them"""

    def __init__(self, look_away_alert_threshold: int = 3, status_broadcast_interval: float = 10.0):
        self.look_away_alert_threshold = look_away_alert_threshold
        self.status_broadcast_interval = status_broadcast_interval

    def classify_face(
        self,
        session_id: str,
        sample: FaceSample,
        counters: ClassifierCounters,
        now: float,
    ) -> FaceOutcome:
        if sample.multiple_faces:
            counters.multiple_face_count += 1
            count = counters.multiple_face_count
            return FaceOutcome(
                violation=ViolationEvent(
                    session_id=session_id,
                    kind=ViolationKind.MULTIPLE_FACES,
                    severity=Severity.CRITICAL,
                    description=f"Multiple faces detected (occurrence {count})",
                    metadata={"confidence": sample.confidence, "count": count},
                ),
                warning=MULTIPLE_FACES_WARNING,
            )

        if sample.looking_away:
            counters.look_away_count += 1
            count = counters.look_away_count
            threshold = self.look_away_alert_threshold

            if count == 1:
                return FaceOutcome(warning=LOOK_AWAY_WARNING)
            if count == threshold:
                return FaceOutcome(
                    violation=ViolationEvent(
                        session_id=session_id,
                        kind=ViolationKind.LOOKING_AWAY_REPEATED,
                        severity=Severity.HIGH,
                        description=f"Student repeatedly looking away ({count} times)",
                        metadata={"confidence": sample.confidence, "count": count},
                    ),
                    warning=LOOK_AWAY_FINAL_WARNING,
                )
            if count > threshold:
                return FaceOutcome(
                    violation=ViolationEvent(
                        session_id=session_id,
                        kind=ViolationKind.LOOKING_AWAY,
                        severity=Severity.MEDIUM,
                        description=f"Student looking away (occurrence {count})",
                        metadata={"confidence": sample.confidence, "count": count},
                    )
                )
            return FaceOutcome()

        if not sample.face_detected:
            return FaceOutcome()

        counters.look_away_count = 0

        last = counters.last_status_broadcast_at
        if last is not None and now - last <= self.status_broadcast_interval:
            return FaceOutcome()

        counters.last_status_broadcast_at = now
        return FaceOutcome(status={
            "faceDetected": sample.face_detected,
            "multipleFaces": sample.multiple_faces,
            "lookingAway": sample.looking_away,
            "confidence": sample.confidence,
            "violationCount": counters.violation_count,
            "lookAwayCount": counters.look_away_count,
        })

    def classify_browser(
        self,
        session_id: str,
        event: BrowserEvent,
        counters: ClassifierCounters,
        session_active: bool = True,
    ) -> BrowserOutcome:
        kind, description, block_default = self._browser_violation(event, session_active)
        if kind is None:
            return BrowserOutcome(block_default=block_default)

        counters.violation_count += 1
        return BrowserOutcome(
            violation=ViolationEvent(
                session_id=session_id,
                kind=kind,
                severity=Severity.MEDIUM,
                description=description,
                metadata={"violationCount": counters.violation_count, "event": event.event_type.value},
            ),
            warning=WARNING_MESSAGES[kind],
            block_default=block_default,
        )

    def blocks_default(self, event: BrowserEvent) -> bool:
        """Whether the client must cancel the event, regardless of session state"""
        return self._browser_violation(event, session_active=False)[2]

    def _browser_violation(self, event: BrowserEvent, session_active: bool):
        if event.event_type == BrowserEventType.FULLSCREEN_CHANGE:
            if event.is_fullscreen is False and session_active:
                return ViolationKind.FULLSCREEN_EXIT, "Student exited fullscreen mode", False
            return None, None, False

        if event.event_type == BrowserEventType.VISIBILITY_CHANGE:
            if event.hidden:
                return ViolationKind.TAB_SWITCH, "Student switched tabs or minimized window", False
            return None, None, False

        if event.event_type == BrowserEventType.WINDOW_BLUR:
            return ViolationKind.WINDOW_BLUR, "Student left the exam window", False

        if not event.key:
            return None, None, False

        key = normalize_key(event.key)
        if event.event_type != BrowserEventType.KEYDOWN:
            # keyup/keypress of Escape is cancelled but already counted on keydown
            return None, None, key in CAPTURE_PHASE_KEYS

        if key == "Escape":
            return ViolationKind.KEY_VIOLATION, "Student attempted to use ESC key", True

        if is_blocked_key(event.key, event.ctrl_key, event.alt_key, event.shift_key):
            combo = key_combo(event.key, event.ctrl_key, event.alt_key, event.shift_key)
            return ViolationKind.KEY_VIOLATION, f"Student attempted to use blocked key: {combo}", True

        return None, None, False
