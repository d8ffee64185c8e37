from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from ....core.database import get_async_db
from ....core.exceptions import IncidentRateLimited
from ....models.user import User
from ....api.deps import get_current_admin, get_supervisor
from ....proctoring.classifier import ViolationEvent
from ....schemas.incident import SecurityIncidentCreate, SecurityIncidentResponse, SecurityIncidentResolve
from ....services.exam_session_service import ExamSessionService
from ....services.incident_service import IncidentService

router = APIRouter()


@router.get("", response_model=List[SecurityIncidentResponse])
async def list_security_incidents(
    session_id: Optional[str] = Query(None),
    unresolved: bool = Query(False),
    current_admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_async_db)
):
    return await IncidentService(db).list_incidents(session_id=session_id, unresolved_only=unresolved)


@router.post("", response_model=SecurityIncidentResponse)
async def report_security_incident(
    payload: SecurityIncidentCreate,
    db: AsyncSession = Depends(get_async_db),
    supervisor=Depends(get_supervisor)
):
    """Incident classified on the client; same rate limit and fixed severities as server-side ones"""
    await ExamSessionService(db).get_session(payload.session_id)
    incident = await supervisor.sink.record_client_report(ViolationEvent(
        session_id=payload.session_id,
        kind=payload.incident_type,
        severity=payload.severity,
        description=payload.description,
        metadata=payload.incident_metadata or {},
    ))
    if incident is None:
        raise IncidentRateLimited(f"Too many {payload.incident_type.value} incidents for this session, not recorded")
    return await IncidentService(db).get_incident(incident["id"])


@router.patch("/{incident_id}", response_model=SecurityIncidentResponse)
async def resolve_security_incident(
    incident_id: str,
    payload: SecurityIncidentResolve = SecurityIncidentResolve(),
    current_admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_async_db)
):
    return await IncidentService(db).resolve_incident(incident_id, resolved_by=current_admin.id)
