"""
Station Service - police station records in Firestore.
"""

import logging
from typing import Dict, List, Optional, Sequence

from agapay.config.firebase import get_db
from agapay.models.station import StationCreate
from agapay.services.station_locator import STATIONS_COLLECTION, StationLocator
from agapay.utils.firestore_helpers import (
    get_document,
    snapshot_to_dict,
    utcnow,
    where_filter,
    write_document,
)

logger = logging.getLogger(__name__)


class StationService:
    def __init__(self, db=None, locator: Optional[StationLocator] = None):
        self.db = db or get_db()
        self.locator = locator or StationLocator(db=self.db)

    def create_station(self, payload: StationCreate) -> Dict:
        doc_ref = self.db.collection(STATIONS_COLLECTION).document()
        now = utcnow()
        data = {
            "name": payload.name,
            "city": payload.city,
            "location": {"type": "Point", "coordinates": list(payload.location.coordinates)},
            "address": payload.address.model_dump() if payload.address else None,
            "image": payload.image.model_dump() if payload.image else None,
            "contact_number": payload.contact_number,
            "created_at": now,
            "updated_at": now,
        }
        write_document(doc_ref, data)
        logger.info(f"Station created: {doc_ref.id} ({payload.name}, {payload.city})")
        return {"id": doc_ref.id, **data}

    def get_station(self, station_id: str) -> Dict:
        return snapshot_to_dict(get_document(self.db, STATIONS_COLLECTION, station_id, "Police station"))

    def list_stations(self, city: Optional[str] = None) -> List[Dict]:
        query = self.db.collection(STATIONS_COLLECTION)
        if city:
            query = where_filter(query, "city", "==", city)
        stations = [snapshot_to_dict(doc) for doc in query.stream()]
        stations.sort(key=lambda s: (s.get("name") or "", s["id"]))
        return stations

    def nearby_stations(self, coordinates: Sequence[float], limit: int = 5) -> List[Dict]:
        ranked = self.locator.rank_stations(coordinates)
        return [{**station, "distance_km": round(distance, 3)} for distance, _, station in ranked[:limit]]

    def delete_station(self, station_id: str) -> None:
        snapshot = get_document(self.db, STATIONS_COLLECTION, station_id, "Police station")
        snapshot.reference.delete()
        logger.info(f"Station deleted: {station_id}")


_station_service: Optional[StationService] = None


def get_station_service() -> StationService:
    global _station_service
    if _station_service is None:
        _station_service = StationService()
    return _station_service
