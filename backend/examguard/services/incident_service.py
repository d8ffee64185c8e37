from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import Optional, List, Dict, Any, Callable
from datetime import datetime, timedelta
import logging

from ..models.security_incident import SecurityIncident
from ..core.cache import cache, EXAM_STATS_KEY
from ..core.config import settings
from ..core.exceptions import IncidentNotFound, IncidentAlreadyResolved
from ..utils.timezone import utc_now

logger = logging.getLogger(__name__)


class IncidentService:
    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utc_now,
                 rate_limit_count: Optional[int] = None, rate_limit_window: Optional[int] = None):
        self.db = db
        self.clock = clock
        self.rate_limit_count = rate_limit_count or settings.incident_rate_limit_count
        self.rate_limit_window = rate_limit_window or settings.incident_rate_limit_window_seconds

    async def count_recent(self, session_id: str, incident_type: str, now: datetime) -> int:
        window_start = now - timedelta(seconds=self.rate_limit_window)
        result = await self.db.execute(
            select(func.count(SecurityIncident.id)).filter(
                SecurityIncident.session_id == session_id,
                SecurityIncident.incident_type == incident_type,
                SecurityIncident.created_at > window_start,
            )
        )
        return result.scalar() or 0

    async def create_incident(
        self,
        session_id: str,
        incident_type: str,
        severity: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
        snapshot_url: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Optional[SecurityIncident]:
        """
        Persist an incident unless the same session already produced
        ``rate_limit_count`` incidents of this type inside the trailing window.
        Returns None for a rate-limited incident.
        """
        now = created_at or self.clock()
        recent = await self.count_recent(session_id, incident_type, now)
        if recent >= self.rate_limit_count:
            logger.info(f"Rate limited: Too many {incident_type} incidents for session {session_id}")
            return None

        incident = SecurityIncident(
            session_id=session_id,
            incident_type=incident_type,
            severity=severity,
            description=description,
            incident_metadata=metadata or {},
            snapshot_url=snapshot_url,
            created_at=now,
        )
        self.db.add(incident)
        await self.db.commit()
        await self.db.refresh(incident)
        await cache.adelete(EXAM_STATS_KEY)

        logger.info(f"Security incident created: {incident_type} for session {session_id}")
        return incident

    async def get_incident(self, incident_id: str) -> SecurityIncident:
        result = await self.db.execute(
            select(SecurityIncident).filter(SecurityIncident.id == incident_id)
        )
        incident = result.scalars().first()
        if incident is None:
            raise IncidentNotFound(f"Security incident {incident_id} not found")
        return incident

    async def list_incidents(self, session_id: Optional[str] = None,
                             unresolved_only: bool = False) -> List[SecurityIncident]:
        query = select(SecurityIncident)
        if session_id:
            query = query.filter(SecurityIncident.session_id == session_id)
        if unresolved_only:
            query = query.filter(SecurityIncident.is_resolved.is_(False))
        result = await self.db.execute(query.order_by(SecurityIncident.created_at.desc()))
        return list(result.scalars().all())

    async def resolve_incident(self, incident_id: str, resolved_by: str) -> SecurityIncident:
        """
        Mark an incident resolved. Resolving again by the same admin returns the
        record unchanged; a different admin cannot take over the resolution.
        """
        incident = await self.get_incident(incident_id)

        if incident.is_resolved:
            if incident.resolved_by and incident.resolved_by != resolved_by:
                raise IncidentAlreadyResolved(
                    f"Incident {incident_id} was already resolved by {incident.resolved_by}"
                )
            return incident

        incident.is_resolved = True
        incident.resolved_by = resolved_by
        incident.resolved_at = self.clock()
        await self.db.commit()
        await self.db.refresh(incident)
        await cache.adelete(EXAM_STATS_KEY)

        logger.info(f"Security incident {incident_id} resolved by {resolved_by}")
        return incident

    async def count_unresolved(self) -> int:
        result = await self.db.execute(
            select(func.count(SecurityIncident.id)).filter(SecurityIncident.is_resolved.is_(False))
        )
        return result.scalar() or 0

    async def get_statistics(self, session_id: str) -> Dict[str, Any]:
        incidents = await self.list_incidents(session_id)

        stats = {
            "session_id": session_id,
            "total_incidents": len(incidents),
            "unresolved": 0,
            "by_type": {},
            "by_severity": {"low": 0, "medium": 0, "high": 0, "critical": 0},
            "timeline": [],
        }

        for incident in sorted(incidents, key=lambda i: i.created_at):
            stats["by_type"][incident.incident_type] = stats["by_type"].get(incident.incident_type, 0) + 1
            if incident.severity in stats["by_severity"]:
                stats["by_severity"][incident.severity] += 1
            if not incident.is_resolved:
                stats["unresolved"] += 1
            stats["timeline"].append({
                "timestamp": incident.created_at,
                "type": incident.incident_type,
                "severity": incident.severity,
            })

        return stats
