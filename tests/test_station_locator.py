"""
Tests for nearest-station assignment.
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from agapay.core.errors import NotFoundError
from agapay.models.station import StationCreate
from agapay.services.station_locator import (
    AUTOMATIC_ASSIGNMENT,
    FALLBACK_NEAREST,
    MANUAL_SELECTION,
    StationLocator,
)
from agapay.services.station_service import StationService
from conftest import STATION_FAR, STATION_NEAR


class TestStationLocator:
    def test_nearest_within_radius(self, db, stations):
        location = StationLocator(db=db).locate(None, [121.05, 14.55])
        assert location.station_id == STATION_NEAR
        assert location.assignment_type == AUTOMATIC_ASSIGNMENT
        assert location.distance_km == pytest.approx(3.0, abs=0.01)

    def test_explicit_station_wins(self, db, stations):
        location = StationLocator(db=db).locate(STATION_FAR, [121.05, 14.55])
        assert location.station_id == STATION_FAR
        assert location.assignment_type == MANUAL_SELECTION

    def test_unknown_explicit_station_falls_back_to_search(self, db, stations):
        location = StationLocator(db=db).locate("no-such-station", [121.05, 14.55])
        assert location.station_id == STATION_NEAR

    def test_fallback_to_global_nearest(self, db, stations):
        # Nothing within 5 km of this point; the near station is still closest
        location = StationLocator(db=db).locate(None, [121.05, 14.0])
        assert location.station_id == STATION_NEAR
        assert location.assignment_type == FALLBACK_NEAREST
        assert location.distance_km > 5

    def test_no_stations_is_not_found(self, db):
        with pytest.raises(NotFoundError):
            StationLocator(db=db).locate(None, [121.05, 14.55])

    def test_equal_distance_breaks_tie_by_id(self, db):
        for station_id in ("b-station", "a-station"):
            db.add("police_stations", station_id, {
                "name": station_id, "city": "City Y",
                "location": {"type": "Point", "coordinates": [121.06, 14.55]},
            })
        location = StationLocator(db=db).locate(None, [121.05, 14.55])
        assert location.station_id == "a-station"

    def test_station_with_invalid_coordinates_is_skipped(self, db, stations):
        db.add("police_stations", "broken-station", {
            "name": "Broken", "city": "City Y",
            "location": {"type": "Point", "coordinates": [121.05, 514.55]},
        })
        locator = StationLocator(db=db)

        location = locator.locate(None, [121.05, 14.55])

        assert location.station_id == STATION_NEAR
        assert "broken-station" not in [station_id for _, station_id, _ in locator.rank_stations([121.05, 14.55])]

    def test_explicit_station_with_invalid_coordinates(self, db, stations):
        db.add("police_stations", "broken-station", {
            "name": "Broken", "city": "City Y",
            "location": {"type": "Point", "coordinates": ["east", 14.55]},
        })
        location = StationLocator(db=db).locate("broken-station", [121.05, 14.55])
        assert location.station_id == "broken-station"
        assert location.distance_km is None

    def test_to_dict_includes_road_estimate(self, db, stations):
        data = StationLocator(db=db).locate(None, [121.05, 14.55]).to_dict()
        assert data["station_id"] == STATION_NEAR
        assert data["estimated_road_km"] == pytest.approx(data["distance_km"] * 1.3, abs=0.01)


class TestStationService:
    def test_create_and_list(self, db):
        service = StationService(db=db)
        created = service.create_station(StationCreate(
            name="Station 1", city="City Y", location={"coordinates": [121.05, 14.58]},
        ))
        assert created["location"] == {"type": "Point", "coordinates": [121.05, 14.58]}
        assert [s["id"] for s in service.list_stations(city="City Y")] == [created["id"]]
        assert service.list_stations(city="City Z") == []

    def test_invalid_coordinates_rejected(self):
        with pytest.raises(PydanticValidationError):
            StationCreate(name="Bad", city="City Y", location={"coordinates": [200, 14.5]})

    def test_nearby_sorted_by_distance(self, db, stations):
        nearby = StationService(db=db).nearby_stations([121.05, 14.55], limit=1)
        assert [s["id"] for s in nearby] == [STATION_NEAR]
        assert nearby[0]["distance_km"] == pytest.approx(3.0, abs=0.1)

    def test_delete(self, db, stations):
        service = StationService(db=db)
        service.delete_station(STATION_FAR)
        assert db.read("police_stations", STATION_FAR) is None
        with pytest.raises(NotFoundError):
            service.get_station(STATION_FAR)
