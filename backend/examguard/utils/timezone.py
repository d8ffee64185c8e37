"""
Timezone helpers.

Timestamps are stored as naive UTC; display conversion uses the configured
exam-centre timezone.
"""
from datetime import datetime
import pytz
from typing import Optional

from ..core.config import settings


def get_display_tz():
    return pytz.timezone(settings.default_timezone)


def utc_now() -> datetime:
    """Current UTC time without tzinfo, the form stored in the database"""
    return datetime.now(pytz.UTC).replace(tzinfo=None)


def to_local(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(get_display_tz())


def format_local_time(dt: Optional[datetime], format_str: Optional[str] = None) -> Optional[str]:
    if dt is None:
        return None
    return to_local(dt).strftime(format_str or settings.timezone_display_format)
