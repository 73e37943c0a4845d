"""
In-app notification models.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    REPORT_CREATED = "REPORT_CREATED"
    STATUS_UPDATED = "STATUS_UPDATED"
    ASSIGNED_OFFICER = "ASSIGNED_OFFICER"
    STATION_ASSIGNED = "STATION_ASSIGNED"
    REPORT_REASSIGNED = "REPORT_REASSIGNED"
    FOLLOW_UP = "FOLLOW_UP"
    REPORT_TRANSFERRED = "REPORT_TRANSFERRED"
    FINDER_REPORT = "FINDER_REPORT"
    FINDER_VERIFIED = "FINDER_VERIFIED"
    BROADCAST = "BROADCAST"


class NotificationResponse(BaseModel):
    id: str
    recipient: str
    type: NotificationType
    title: str
    message: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False
    created_at: Optional[datetime] = None
