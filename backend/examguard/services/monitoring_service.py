from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional, List, Dict, Any
import logging

from ..models.monitoring_log import MonitoringLog

logger = logging.getLogger(__name__)


class MonitoringService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_log(self, session_id: str, event_type: str,
                         event_data: Optional[Dict[str, Any]] = None) -> MonitoringLog:
        log = MonitoringLog(session_id=session_id, event_type=event_type, event_data=event_data or {})
        self.db.add(log)
        await self.db.commit()
        await self.db.refresh(log)
        return log

    async def list_logs(self, session_id: str) -> List[MonitoringLog]:
        result = await self.db.execute(
            select(MonitoringLog)
            .filter(MonitoringLog.session_id == session_id)
            .order_by(MonitoringLog.timestamp.desc())
        )
        return list(result.scalars().all())


async def record_monitoring_event(session_factory, session_id: str, event_type: str,
                                  event_data: Optional[Dict[str, Any]] = None) -> Optional[MonitoringLog]:
    """Write a monitoring log from outside a request; failures are logged and dropped"""
    try:
        async with session_factory() as db:
            return await MonitoringService(db).create_log(session_id, event_type, event_data)
    except Exception as e:
        logger.warning(f"Failed to write {event_type} monitoring log for session {session_id}: {e}")
        return None
