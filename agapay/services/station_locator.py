"""
Station Locator - picks the police station responsible for a location.

Rules, in order:
1. An explicit station choice that exists always wins.
2. Otherwise the nearest station within STATION_SEARCH_RADIUS_KM.
3. Otherwise the globally nearest station, whatever the distance.
4. No stations registered at all -> NotFoundError.

Firestore has no geospatial $near, so stations are streamed and ranked
here. Equal distances are broken by station id so the result is
deterministic.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from agapay.config.firebase import get_db
from agapay.core.errors import NotFoundError, ValidationError
from agapay.core.settings import settings
from agapay.services.geo import distance_km, estimate_road_distance, validate_coordinates
from agapay.utils.firestore_helpers import snapshot_to_dict

logger = logging.getLogger(__name__)

STATIONS_COLLECTION = "police_stations"

MANUAL_SELECTION = "Manual Selection"
AUTOMATIC_ASSIGNMENT = "Automatic Assignment"
FALLBACK_NEAREST = "Fallback Nearest"


@dataclass
class StationLocation:
    station: Dict
    distance_km: Optional[float]
    assignment_type: str

    @property
    def station_id(self) -> str:
        return self.station["id"]

    def to_dict(self) -> Dict:
        return {
            "station_id": self.station_id,
            "station_name": self.station.get("name"),
            "distance_km": round(self.distance_km, 3) if self.distance_km is not None else None,
            "estimated_road_km": (
                round(estimate_road_distance(self.distance_km), 3) if self.distance_km is not None else None
            ),
            "assignment_type": self.assignment_type,
        }


def station_coordinates(station: Dict) -> Optional[Sequence[float]]:
    """Stored [lon, lat] of a station, or None when missing or out of range."""
    coords = (station.get("location") or {}).get("coordinates")
    if not coords or len(coords) != 2:
        return None
    try:
        validate_coordinates(coords, "station")
    except ValidationError as e:
        logger.warning(f"Station {station.get('id')} has invalid coordinates {coords}: {e.details}")
        return None
    return coords


class StationLocator:
    def __init__(self, db=None, radius_km: Optional[float] = None):
        self.db = db or get_db()
        self.radius_km = settings.STATION_SEARCH_RADIUS_KM if radius_km is None else radius_km

    def _explicit_station(self, station_id: str) -> Optional[Dict]:
        snapshot = self.db.collection(STATIONS_COLLECTION).document(station_id).get()
        if not snapshot.exists:
            logger.warning(f"Explicit station {station_id} not found, falling back to search")
            return None
        return snapshot_to_dict(snapshot)

    def rank_stations(self, coordinates: Sequence[float]) -> List[Tuple[float, str, Dict]]:
        """All stations with coordinates as (distance_km, station_id, station), nearest first."""
        ranked = []
        for snapshot in self.db.collection(STATIONS_COLLECTION).stream():
            station = snapshot_to_dict(snapshot)
            coords = station_coordinates(station)
            if coords is None:
                logger.warning(f"Station {station['id']} has no usable coordinates, skipping")
                continue
            ranked.append((distance_km(coordinates, coords), station["id"], station))
        ranked.sort(key=lambda item: (item[0], item[1]))
        return ranked

    def locate(self, explicit_station_id: Optional[str], coordinates: Sequence[float]) -> StationLocation:
        validate_coordinates(coordinates)

        if explicit_station_id:
            station = self._explicit_station(explicit_station_id)
            if station is not None:
                coords = station_coordinates(station)
                distance = distance_km(coordinates, coords) if coords else None
                return StationLocation(station, distance, MANUAL_SELECTION)

        ranked = self.rank_stations(coordinates)
        if not ranked:
            raise NotFoundError("No police stations registered", {"coordinates": list(coordinates)})

        distance, station_id, station = ranked[0]
        if distance <= self.radius_km:
            logger.info(f"Nearest station {station_id} at {distance:.2f} km")
            return StationLocation(station, distance, AUTOMATIC_ASSIGNMENT)

        logger.info(
            f"No station within {self.radius_km} km; falling back to nearest {station_id} at {distance:.2f} km"
        )
        return StationLocation(station, distance, FALLBACK_NEAREST)


_station_locator: Optional[StationLocator] = None


def get_station_locator() -> StationLocator:
    global _station_locator
    if _station_locator is None:
        _station_locator = StationLocator()
    return _station_locator
