from pydantic import BaseModel
from datetime import datetime
from typing import Optional, Dict, Any


class MonitoringLogCreate(BaseModel):
    session_id: str
    event_type: str
    event_data: Optional[Dict[str, Any]] = None


class MonitoringLogResponse(BaseModel):
    id: str
    session_id: str
    event_type: str
    event_data: Optional[Dict[str, Any]] = None
    timestamp: datetime

    class Config:
        from_attributes = True
