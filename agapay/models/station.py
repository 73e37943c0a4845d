"""
Police station models.
"""

from typing import Optional

from pydantic import BaseModel, Field

from agapay.models.base import Address, GeoPoint, MediaRef


class StationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    location: GeoPoint
    address: Optional[Address] = None
    image: Optional[MediaRef] = None
    contact_number: Optional[str] = Field(None, max_length=30)

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Station 1",
                "city": "City Y",
                "location": {"coordinates": [121.05, 14.58]},
            }
        }


class StationResponse(BaseModel):
    id: str
    name: str
    city: str
    location: GeoPoint
    address: Optional[Address] = None
    image: Optional[MediaRef] = None
    contact_number: Optional[str] = None
    distance_km: Optional[float] = None
