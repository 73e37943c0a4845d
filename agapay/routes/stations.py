"""
Police station endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from agapay.models.base import DataResponse
from agapay.models.station import StationCreate
from agapay.models.user import Principal
from agapay.services.authorization import Capability, requires
from agapay.services.geo import validate_coordinates
from agapay.services.station_service import StationService, get_station_service

router = APIRouter(prefix="/stations", tags=["Stations"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=DataResponse)
async def create_station(
    body: StationCreate,
    principal: Principal = Depends(requires(Capability.MANAGE_STATIONS)),
    service: StationService = Depends(get_station_service),
):
    return DataResponse(message="Station created", data=service.create_station(body))


@router.get("", response_model=DataResponse)
async def list_stations(
    city: Optional[str] = Query(None, description="Filter by city"),
    service: StationService = Depends(get_station_service),
):
    return DataResponse(data=service.list_stations(city))


@router.get("/nearby", response_model=DataResponse)
async def nearby_stations(
    longitude: float = Query(...),
    latitude: float = Query(...),
    limit: int = Query(5, ge=1, le=50),
    service: StationService = Depends(get_station_service),
):
    """Stations ranked by straight-line distance from a point."""
    coordinates = validate_coordinates([longitude, latitude])
    return DataResponse(data=service.nearby_stations(coordinates, limit))


@router.get("/{station_id}", response_model=DataResponse)
async def get_station(station_id: str, service: StationService = Depends(get_station_service)):
    return DataResponse(data=service.get_station(station_id))


@router.delete("/{station_id}", response_model=DataResponse)
async def delete_station(
    station_id: str,
    principal: Principal = Depends(requires(Capability.MANAGE_STATIONS)),
    service: StationService = Depends(get_station_service),
):
    service.delete_station(station_id)
    return DataResponse(message="Station deleted", data={"id": station_id})
