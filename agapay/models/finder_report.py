"""
Finder report models: someone reports having located the person in a report.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from agapay.models.base import Address

MAX_FINDER_IMAGES = 5


class FinderStatus(str, Enum):
    PENDING = "Pending"
    VERIFIED = "Verified"
    FALSE_REPORT = "False Report"


class EmotionalState(str, Enum):
    CALM = "Calm"
    DISTRESSED = "Distressed"
    CONFUSED = "Confused"
    OTHER = "Other"


class PersonCondition(BaseModel):
    physical_condition: str = Field(..., min_length=1, max_length=500)
    emotional_state: EmotionalState
    notes: Optional[str] = Field(None, max_length=1000)


class FinderReportCreate(BaseModel):
    original_report_id: str = Field(..., min_length=1)
    discovery_address: Address
    discovery_date_time: datetime
    person_condition: PersonCondition
    authorities_notified: bool = False


class FinderVerification(BaseModel):
    status: FinderStatus
    notes: Optional[str] = Field(None, max_length=1000)
