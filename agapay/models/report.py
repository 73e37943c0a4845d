"""
Pydantic models for incident reports.
These models handle validation for report submission, owner edits and publishing.
"""

from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from agapay.models.base import Address, MediaRef


class ReportType(str, Enum):
    ABSENT = "Absent"
    MISSING = "Missing"
    ABDUCTED = "Abducted"
    KIDNAPPED = "Kidnapped"
    HIT_AND_RUN = "Hit-and-Run"
    OTHERS = "Others"


class PersonStatus(str, Enum):
    STILL_MISSING = "Still Missing"
    FOUND = "Found"


class PersonInvolved(BaseModel):
    """
    The person a report is about.

    `most_recent_photo` may be omitted when the photo is uploaded alongside
    the request; the service rejects a report that ends up without one.
    """
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    age: Optional[int] = Field(None, ge=0, le=150)
    date_of_birth: Optional[date] = None
    relationship: Optional[str] = Field(None, max_length=100, description="Relationship to the reporter")
    last_seen_date: Optional[date] = None
    last_seen_time: Optional[str] = Field(None, description="HH:MM or HH:MM:SS, local time")
    last_known_location: str = Field(..., min_length=1, max_length=300)
    most_recent_photo: Optional[MediaRef] = None
    # Optional descriptors
    alias: Optional[str] = None
    gender: Optional[str] = None
    height: Optional[str] = None
    weight: Optional[str] = None
    eye_color: Optional[str] = None
    hair_color: Optional[str] = None
    scars_marks_tattoos: Optional[str] = None
    last_known_clothing: Optional[str] = None
    medications: Optional[str] = None
    blood_type: Optional[str] = None
    other_information: Optional[str] = None
    status: PersonStatus = PersonStatus.STILL_MISSING

    @field_validator("last_seen_time")
    @classmethod
    def _check_time(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        parts = value.split(":")
        if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
            raise ValueError("last_seen_time must be HH:MM or HH:MM:SS")
        hours, minutes = int(parts[0]), int(parts[1])
        seconds = int(parts[2]) if len(parts) == 3 else 0
        if hours > 23 or minutes > 59 or seconds > 59:
            raise ValueError("last_seen_time out of range")
        return value


class ReportCreate(BaseModel):
    """
    Incoming report submission.
    `broadcast_consent` has no default: the reporter must choose explicitly.
    """
    type: ReportType
    person_involved: PersonInvolved
    address: Address
    broadcast_consent: bool
    police_station_id: Optional[str] = Field(None, description="Reporter's explicit station choice")
    description: Optional[str] = Field(None, max_length=2000)
    additional_images: List[MediaRef] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "type": "Missing",
                "person_involved": {
                    "first_name": "Juan",
                    "last_name": "Dela Cruz",
                    "age": 12,
                    "last_seen_date": "2025-01-10",
                    "last_seen_time": "14:30",
                    "last_known_location": "Near the public market",
                },
                "address": {
                    "street_address": "123 Main St",
                    "barangay": "Barangay X",
                    "city": "City Y",
                    "zip_code": "1000",
                },
                "broadcast_consent": True,
            }
        }
        extra = "ignore"


class OwnerReportUpdate(BaseModel):
    """Reporter edit while the report is still Pending. Omitted fields are unchanged."""
    type: Optional[ReportType] = None
    person_involved: Optional[Dict] = Field(None, description="Partial person fields to merge")
    address: Optional[Address] = None
    description: Optional[str] = Field(None, max_length=2000)
    broadcast_consent: Optional[bool] = None

    class Config:
        extra = "forbid"


class ConsentUpdate(BaseModel):
    broadcast_consent: bool


class StationAssignment(BaseModel):
    station_id: str = Field(..., min_length=1)


class OfficerAssignment(BaseModel):
    officer_id: str = Field(..., min_length=1)


class StatusUpdateRequest(BaseModel):
    status: str = Field(..., description="Assigned | Under Investigation | Resolved")
    note: Optional[str] = Field(None, max_length=1000)


class FollowUpRequest(BaseModel):
    note: str = Field(..., min_length=1, max_length=2000)


class TransferReason(str, Enum):
    JURISDICTION_CHANGE = "Jurisdiction Change"
    SPECIALIZED_UNIT = "Specialized Unit Required"
    RESOURCE_LIMITATION = "Resource Limitation"
    ADMINISTRATIVE = "Administrative Decision"
    CASE_COMPLEXITY = "Case Complexity"
    INTER_AGENCY = "Inter-Agency Cooperation"
    OTHER = "Other"


class UrgencyLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class TransferRequest(BaseModel):
    """Hand a report over to another agency."""
    recipient_email: str = Field(..., min_length=3, max_length=200)
    recipient_department: str = Field(..., min_length=1, max_length=200)
    recipient_name: Optional[str] = None
    recipient_contact: Optional[str] = None
    transfer_reason: TransferReason = TransferReason.OTHER
    transfer_notes: Optional[str] = Field(None, max_length=2000)
    urgency_level: UrgencyLevel = UrgencyLevel.MEDIUM

    @field_validator("recipient_email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        if "@" not in value or value.startswith("@") or value.endswith("@"):
            raise ValueError("recipient_email is not a valid email address")
        return value.strip()


class ReportFilters(BaseModel):
    """Query filters for staff report listings."""
    status: Optional[str] = None
    type: Optional[ReportType] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)
