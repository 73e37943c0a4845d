"""
Pydantic base models shared by the API layer.

DESIGN PRINCIPLE:
- Models reflect data structure, not business logic
- Guards and transitions live in the services
"""

from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator


class BaseResponse(BaseModel):
    """
    Base response model for API responses.
    All API responses can extend this for consistency.
    """
    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DataResponse(BaseResponse):
    """Envelope for endpoints returning a document or a page of documents."""
    data: Any = None


class MediaRef(BaseModel):
    """A blob stored in the media host."""
    url: str = Field(..., min_length=1, description="Public URL of the blob")
    public_id: str = Field(..., min_length=1, description="Blob id used for deletion")


class Address(BaseModel):
    """Structured address; geocoded into a point."""
    street_address: str = Field(..., min_length=1, max_length=200)
    barangay: str = Field(..., min_length=1, max_length=100)
    city: str = Field(..., min_length=1, max_length=100)
    zip_code: str = Field(..., min_length=1, max_length=10)

    class Config:
        json_schema_extra = {
            "example": {
                "street_address": "123 Main St",
                "barangay": "Barangay X",
                "city": "City Y",
                "zip_code": "1000",
            }
        }


class GeoPoint(BaseModel):
    """[longitude, latitude] in decimal degrees."""
    coordinates: List[float] = Field(..., min_length=2, max_length=2)

    @field_validator("coordinates")
    @classmethod
    def _check_range(cls, value: List[float]) -> List[float]:
        lon, lat = value
        if not -180 <= lon <= 180:
            raise ValueError("longitude must be within [-180, 180]")
        if not -90 <= lat <= 90:
            raise ValueError("latitude must be within [-90, 90]")
        return value


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total: int
    has_more: bool
