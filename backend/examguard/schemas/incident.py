from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Dict, Any, List, Literal

from ..proctoring.classifier import ViolationKind, Severity


class SecurityIncidentCreate(BaseModel):
    session_id: str
    incident_type: ViolationKind
    severity: Severity = Severity.MEDIUM
    description: str = Field(..., min_length=1)
    incident_metadata: Optional[Dict[str, Any]] = None
    snapshot_url: Optional[str] = None


class SecurityIncidentResponse(BaseModel):
    id: str
    session_id: str
    incident_type: str
    severity: str
    description: str
    incident_metadata: Optional[Dict[str, Any]] = None
    snapshot_url: Optional[str] = None
    is_resolved: bool
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SecurityIncidentResolve(BaseModel):
    # resolved_at and resolved_by are always set by the server
    is_resolved: Literal[True] = True


class IncidentTimelineEntry(BaseModel):
    timestamp: datetime
    type: str
    severity: str


class IncidentStatistics(BaseModel):
    session_id: str
    total_incidents: int
    unresolved: int
    by_type: Dict[str, int]
    by_severity: Dict[str, int]
    timeline: List[IncidentTimelineEntry]
