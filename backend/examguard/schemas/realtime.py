"""
WebSocket message shapes. The wire format is camelCase; every model also
accepts snake_case field names so the same payloads work over REST.
"""
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from typing import Optional, Dict, Any, Literal

from ..proctoring.classifier import BrowserEventType, ViolationKind, Severity, FaceSample, BrowserEvent


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ClientMessage(CamelModel):
    type: str
    session_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    payload: Optional[Dict[str, Any]] = None


class AuthMessage(CamelModel):
    type: Literal["auth"]
    user_id: str = Field(..., min_length=1)
    user_type: Literal["admin", "student"]
    session_id: Optional[str] = None


class FaceSampleData(CamelModel):
    face_detected: bool
    multiple_faces: bool = False
    looking_away: bool = False
    confidence: float = Field(0.0, ge=0.0, le=1.0)

    def to_sample(self) -> FaceSample:
        return FaceSample(
            face_detected=self.face_detected,
            multiple_faces=self.multiple_faces,
            looking_away=self.looking_away,
            confidence=self.confidence,
        )


class BrowserEventData(CamelModel):
    event_type: BrowserEventType
    is_fullscreen: Optional[bool] = None
    hidden: Optional[bool] = None
    key: Optional[str] = None
    ctrl_key: bool = False
    alt_key: bool = False
    shift_key: bool = False

    def to_event(self) -> BrowserEvent:
        return BrowserEvent(
            event_type=self.event_type,
            is_fullscreen=self.is_fullscreen,
            hidden=self.hidden,
            key=self.key,
            ctrl_key=self.ctrl_key,
            alt_key=self.alt_key,
            shift_key=self.shift_key,
        )


class ClientViolationData(CamelModel):
    session_id: str
    incident_type: ViolationKind
    severity: Severity
    description: str = Field(..., min_length=1)
    metadata: Dict[str, Any] = {}
    student_name: Optional[str] = None
    roll_number: Optional[str] = None


class VideoSnapshotData(CamelModel):
    session_id: str
    student_id: Optional[str] = None
    student_name: Optional[str] = None
    roll_number: Optional[str] = None
    snapshot: str
    timestamp: Optional[Any] = None
