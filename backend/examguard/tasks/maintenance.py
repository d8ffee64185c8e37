from examguard.core.celery_app import celery_app
from examguard.core.async_task import AsyncTask
from examguard.core.database import AsyncSessionLocal
from examguard.core.cache import cache
from examguard.core.config import settings
from examguard.models.exam_session import ExamSession
from examguard.proctoring.state_machine import ExamSessionMachine, SessionState, SessionStatus, SubmitReason
from examguard.utils.timezone import utc_now
from sqlalchemy import select, text
from datetime import datetime, timedelta
from typing import Optional
import logging
import psutil

logger = logging.getLogger(__name__)


def is_overdue(db_session: ExamSession, now: datetime, grace_seconds: int) -> bool:
    """An in-progress session whose stored budget ran out with nobody counting it down"""
    last_seen = db_session.updated_at or db_session.start_time or db_session.created_at
    if last_seen is None:
        return False
    deadline = last_seen + timedelta(seconds=(db_session.time_remaining or 0) + grace_seconds)
    return deadline < now


async def expire_overdue(session_factory, now: Optional[datetime] = None,
                         grace_seconds: Optional[int] = None) -> dict:
    now = now or utc_now()
    grace = settings.stale_session_grace_seconds if grace_seconds is None else grace_seconds

    async with session_factory() as db:
        result = await db.execute(
            select(ExamSession).filter(ExamSession.status == SessionStatus.IN_PROGRESS.value)
        )
        expired = []
        for db_session in result.scalars().all():
            if not is_overdue(db_session, now, grace):
                continue
            state = SessionState.from_model(db_session)
            machine = ExamSessionMachine(state, clock=lambda: now)
            state.time_remaining = 0
            machine.submit(SubmitReason.TIME_EXPIRED)
            state.apply_to(db_session)
            expired.append(db_session.id)

        await db.commit()

    for session_id in expired:
        logger.warning(f"Session {session_id} auto-submitted by maintenance: time budget exhausted")

    return {'checked_at': now.isoformat(), 'expired_sessions': expired, 'total_expired': len(expired)}


@celery_app.task(base=AsyncTask, bind=True, name="examguard.tasks.maintenance.expire_overdue_sessions")
async def expire_overdue_sessions(self):
    """Finalize in-progress sessions whose time ran out while no live timer owned them"""
    try:
        return await expire_overdue(AsyncSessionLocal)
    except Exception as exc:
        logger.error(f"Error in expire_overdue_sessions: {exc}")
        raise


async def collect_health() -> dict:
    health_status = {
        'timestamp': utc_now().isoformat(),
        'cache': False,
        'database': False,
        'memory_usage': None,
    }

    health_status['cache'] = await cache.ahealth_check()

    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        health_status['database'] = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")

    memory = psutil.virtual_memory()
    health_status['memory_usage'] = {
        'total_gb': round(memory.total / (1024**3), 2),
        'available_gb': round(memory.available / (1024**3), 2),
        'percent': memory.percent,
    }

    if not health_status['database']:
        logger.warning(f"Health check degraded: {health_status}")
    return health_status


@celery_app.task(base=AsyncTask, name="examguard.tasks.maintenance.health_check")
async def health_check():
    """Periodic cache, database and memory probe"""
    return await collect_health()
