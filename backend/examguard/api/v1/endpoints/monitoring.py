from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from ....core.database import get_async_db
from ....models.user import User
from ....api.deps import get_current_admin
from ....schemas.exam_session import ActiveSessionInfo, ExamStats
from ....schemas.monitoring import MonitoringLogCreate, MonitoringLogResponse
from ....services.exam_session_service import ExamSessionService
from ....services.monitoring_service import MonitoringService

router = APIRouter()


@router.post("/monitoring-logs", response_model=MonitoringLogResponse)
async def create_monitoring_log(
    payload: MonitoringLogCreate,
    db: AsyncSession = Depends(get_async_db)
):
    await ExamSessionService(db).get_session(payload.session_id)
    return await MonitoringService(db).create_log(payload.session_id, payload.event_type, payload.event_data)


@router.get("/monitoring-logs/{session_id}", response_model=List[MonitoringLogResponse])
async def get_monitoring_logs(
    session_id: str,
    current_admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_async_db)
):
    return await MonitoringService(db).list_logs(session_id)


@router.get("/active-sessions", response_model=List[ActiveSessionInfo])
async def get_active_sessions(
    current_admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_async_db)
):
    """Sessions currently in progress or paused, with progress for the live dashboard"""
    return await ExamSessionService(db).list_active_sessions()


@router.get("/exam-stats", response_model=ExamStats)
async def get_exam_stats(
    current_admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_async_db)
):
    return await ExamSessionService(db).get_exam_stats()
