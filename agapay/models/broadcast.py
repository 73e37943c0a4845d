"""
Broadcast (publish/unpublish) request and result models.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class BroadcastChannel(str, Enum):
    PUSH = "push"
    EMAIL = "email"
    FACEBOOK = "facebook"


# Accepted spellings for the public channels
CHANNEL_ALIASES: Dict[str, BroadcastChannel] = {
    "push": BroadcastChannel.PUSH,
    "email": BroadcastChannel.EMAIL,
    "facebook": BroadcastChannel.FACEBOOK,
    "social": BroadcastChannel.FACEBOOK,
}


class ScopeType(str, Enum):
    CITY = "city"
    RADIUS = "radius"
    ALL = "all"


class BroadcastScope(BaseModel):
    """Who receives a broadcast: users of a city, within a radius of the report, or everyone."""
    type: ScopeType = ScopeType.ALL
    city: Optional[str] = None
    radius_km: Optional[float] = Field(None, gt=0, le=500)

    @model_validator(mode="after")
    def _check_scope(self) -> "BroadcastScope":
        if self.type == ScopeType.CITY and not self.city:
            raise ValueError("city scope requires 'city'")
        if self.type == ScopeType.RADIUS and not self.radius_km:
            raise ValueError("radius scope requires 'radius_km'")
        return self


class PublishRequest(BaseModel):
    channels: List[str] = Field(default_factory=list, description="push, email, facebook (or social)")
    scheduled_at: Optional[datetime] = Field(None, description="Defer publication until this time")
    scope: BroadcastScope = Field(default_factory=BroadcastScope)
    notes: Optional[str] = Field(None, max_length=500)

    class Config:
        json_schema_extra = {
            "example": {
                "channels": ["push", "facebook"],
                "scope": {"type": "city", "city": "City Y"},
            }
        }


class PublishResult(BaseModel):
    report_id: str
    state: str = Field(..., description="scheduled | published")
    channels: List[str] = Field(default_factory=list)
    scheduled_at: Optional[datetime] = None
    results: Dict[str, str] = Field(default_factory=dict, description="channel -> success|failure")
    targeted_users: int = 0
    history_entry: Optional[Dict] = None
