"""
AgapayAlert - Shared Test Fixtures

In-memory Firestore double, recording notification channels, a fake
geocoder and blob store, and principals for each role.
"""

import copy
import itertools
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from google.api_core import exceptions as gexc
from httpx import ASGITransport, AsyncClient

# Configure test environment BEFORE importing app
os.environ["PUBLISH_SWEEP_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from agapay.core.errors import ChannelDispatchFailure
from agapay.models.base import MediaRef
from agapay.models.user import Principal, Role
from agapay.services.blob_store import UploadedFile
from agapay.services.channels.base import ChannelMessage, ChannelOutcome
from agapay.services.connection_registry import ConnectionRegistry
from agapay.services.geocoding.base import GeocodeResult
from agapay.services.notification_dispatcher import NotificationDispatcher


# =============================================================================
# In-memory Firestore
# =============================================================================

_MISSING = object()


def _resolve(data: Dict, path: str):
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _matches(value, op: str, expected) -> bool:
    if value is _MISSING:
        return False
    if op == "==":
        return value == expected
    if op == "!=":
        return value != expected
    if op == "in":
        return value in expected
    if op == "array_contains":
        return isinstance(value, list) and expected in value
    if value is None or expected is None:
        return False
    if op == "<":
        return value < expected
    if op == "<=":
        return value <= expected
    if op == ">":
        return value > expected
    if op == ">=":
        return value >= expected
    raise ValueError(f"Unsupported operator {op}")


class FakeWriteOption:
    def __init__(self, last_update_time):
        self.last_update_time = last_update_time


class FakeSnapshot:
    def __init__(self, reference: "FakeDocumentRef", data: Optional[Dict], update_time):
        self.reference = reference
        self.id = reference.id
        self._data = data
        self.update_time = update_time

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Optional[Dict]:
        return copy.deepcopy(self._data) if self._data is not None else None


class FakeDocumentRef:
    def __init__(self, db: "FakeFirestore", collection: str, doc_id: str):
        self._db = db
        self._collection = collection
        self.id = doc_id

    @property
    def _key(self):
        return (self._collection, self.id)

    def get(self) -> FakeSnapshot:
        entry = self._db.docs.get(self._key)
        if entry is None:
            return FakeSnapshot(self, None, None)
        return FakeSnapshot(self, entry["data"], entry["update_time"])

    def _check(self, option: Optional[FakeWriteOption]) -> None:
        entry = self._db.docs.get(self._key)
        if entry is None:
            raise gexc.NotFound(f"{self._collection}/{self.id}")
        if option is not None and entry["update_time"] != option.last_update_time:
            raise gexc.FailedPrecondition(f"{self._collection}/{self.id} was modified")

    def set(self, data: Dict) -> None:
        if self._db.fail_writes is not None:
            raise self._db.fail_writes
        self._db.docs[self._key] = {"data": copy.deepcopy(data), "update_time": self._db.tick()}

    def update(self, data: Dict, option: Optional[FakeWriteOption] = None) -> None:
        if self._db.fail_writes is not None:
            raise self._db.fail_writes
        self._check(option)
        self._apply_update(data)

    def _apply_update(self, data: Dict) -> None:
        entry = self._db.docs[self._key]
        stored = entry["data"]
        for key, value in data.items():
            target = stored
            parts = key.split(".")
            for part in parts[:-1]:
                target = target.setdefault(part, {})
            target[parts[-1]] = copy.deepcopy(value)
        entry["update_time"] = self._db.tick()

    def delete(self, option: Optional[FakeWriteOption] = None) -> None:
        if option is not None:
            self._check(option)
        self._db.docs.pop(self._key, None)


class FakeQuery:
    def __init__(self, db: "FakeFirestore", collection: str, filters=None, order=None, limit=None):
        self._db = db
        self._collection = collection
        self._filters = list(filters or [])
        self._order = list(order or [])
        self._limit = limit

    def where(self, field_path: str, op_string: str, value) -> "FakeQuery":
        return FakeQuery(self._db, self._collection, self._filters + [(field_path, op_string, value)],
                         self._order, self._limit)

    def order_by(self, field_path: str, direction: str = "ASCENDING") -> "FakeQuery":
        return FakeQuery(self._db, self._collection, self._filters, self._order + [(field_path, direction)],
                         self._limit)

    def limit(self, count: int) -> "FakeQuery":
        return FakeQuery(self._db, self._collection, self._filters, self._order, count)

    def stream(self):
        snapshots = []
        for (collection, doc_id), entry in list(self._db.docs.items()):
            if collection != self._collection:
                continue
            data = entry["data"]
            if all(_matches(_resolve(data, f), op, v) for f, op, v in self._filters):
                ref = FakeDocumentRef(self._db, collection, doc_id)
                snapshots.append(FakeSnapshot(ref, data, entry["update_time"]))
        for field_path, direction in reversed(self._order):
            snapshots.sort(
                key=lambda s: _resolve(s._data, field_path),
                reverse=str(direction).upper().startswith("DESC"),
            )
        if self._limit is not None:
            snapshots = snapshots[:self._limit]
        return iter(snapshots)


class FakeCollection(FakeQuery):
    def __init__(self, db: "FakeFirestore", name: str):
        super().__init__(db, name)
        self.id = name

    def document(self, doc_id: Optional[str] = None) -> FakeDocumentRef:
        return FakeDocumentRef(self._db, self._collection, doc_id or uuid.uuid4().hex[:20])


class FakeBatch:
    def __init__(self, db: "FakeFirestore"):
        self._db = db
        self._ops: List = []

    def set(self, ref: FakeDocumentRef, data: Dict) -> None:
        self._ops.append(("set", ref, data, None))

    def update(self, ref: FakeDocumentRef, data: Dict, option: Optional[FakeWriteOption] = None) -> None:
        self._ops.append(("update", ref, data, option))

    def delete(self, ref: FakeDocumentRef, option: Optional[FakeWriteOption] = None) -> None:
        self._ops.append(("delete", ref, None, option))

    def commit(self) -> None:
        # All preconditions are checked before anything is applied
        for kind, ref, _, option in self._ops:
            if kind in ("update", "delete") and (option is not None or kind == "update"):
                ref._check(option)
        for kind, ref, data, _ in self._ops:
            if kind == "set":
                ref.set(data)
            elif kind == "update":
                ref._apply_update(data)
            else:
                ref.delete()
        self._db.commits += 1


class FakeFirestore:
    """Just enough of google.cloud.firestore.Client for the services."""

    def __init__(self):
        self.docs: Dict = {}
        self._clock = itertools.count(1)
        self.fail_writes: Optional[Exception] = None
        self.commits = 0

    def tick(self) -> int:
        return next(self._clock)

    def collection(self, name: str) -> FakeCollection:
        return FakeCollection(self, name)

    def collections(self) -> List[FakeCollection]:
        return [FakeCollection(self, name) for name in sorted({c for c, _ in self.docs})]

    def batch(self) -> FakeBatch:
        return FakeBatch(self)

    def write_option(self, last_update_time=None, **kwargs) -> FakeWriteOption:
        return FakeWriteOption(last_update_time)

    # Helpers for tests
    def add(self, collection: str, doc_id: str, data: Dict) -> Dict:
        self.collection(collection).document(doc_id).set(data)
        return {"id": doc_id, **data}

    def read(self, collection: str, doc_id: str) -> Optional[Dict]:
        return self.collection(collection).document(doc_id).get().to_dict()

    def all(self, collection: str) -> List[Dict]:
        return [{"id": s.id, **s.to_dict()} for s in self.collection(collection).stream()]


# =============================================================================
# Collaborator fakes
# =============================================================================

class RecordingChannel:
    """Channel that succeeds and remembers what it was asked to send."""

    def __init__(self, name: str, requires_recipients: bool = True, external_id: Optional[str] = None):
        self.name = name
        self.requires_recipients = requires_recipients
        self.external_id = external_id
        self.sent: List[Dict] = []
        self.retracted: List[str] = []

    async def send(self, message: ChannelMessage, recipients: List[Dict]) -> ChannelOutcome:
        if self.requires_recipients and not recipients:
            raise ChannelDispatchFailure("no recipients", {"channel": self.name})
        self.sent.append({"message": message, "recipients": recipients})
        delivered = len(recipients) if self.requires_recipients else 1
        return ChannelOutcome.success(self.name, delivered=delivered, external_id=self.external_id)

    def retract(self, post_id: str) -> bool:
        self.retracted.append(post_id)
        return True


class FailingChannel:
    def __init__(self, name: str, detail: str = "SMTP error: connection refused"):
        self.name = name
        self.requires_recipients = True
        self.detail = detail
        self.calls = 0

    async def send(self, message: ChannelMessage, recipients: List[Dict]) -> ChannelOutcome:
        self.calls += 1
        raise ChannelDispatchFailure(self.detail, {"channel": self.name})


class FakeGeocoder:
    name = "fake"

    def __init__(self, coordinates=(121.05, 14.55)):
        self.coordinates = list(coordinates) if coordinates else None
        self.calls: List[Dict] = []

    def geocode(self, address: Dict) -> GeocodeResult:
        self.calls.append(address)
        if self.coordinates is None:
            return GeocodeResult(success=False, message="Could not find coordinates for the address", provider=self.name)
        return GeocodeResult(success=True, coordinates=list(self.coordinates), query=address.get("city"),
                             provider=self.name)


class FakeBlobStore:
    def __init__(self):
        self.blobs: Dict[str, bytes] = {}
        self.deleted: List[str] = []
        self.fail_delete: set = set()

    def upload(self, upload: UploadedFile, folder: str) -> MediaRef:
        public_id = f"{folder}/{uuid.uuid4().hex}"
        self.blobs[public_id] = upload.content
        return MediaRef(url=f"https://storage.test/{public_id}", public_id=public_id)

    def delete(self, public_id: str) -> bool:
        if public_id in self.fail_delete:
            return False
        self.deleted.append(public_id)
        self.blobs.pop(public_id, None)
        return True

    def delete_many(self, public_ids) -> List[str]:
        return [public_id for public_id in public_ids if not self.delete(public_id)]


# =============================================================================
# Core Fixtures
# =============================================================================

STATION_NEAR = "station-near"
STATION_FAR = "station-far"


@pytest.fixture
def db() -> FakeFirestore:
    return FakeFirestore()


@pytest.fixture
def channels() -> Dict[str, Any]:
    return {
        "push": RecordingChannel("push"),
        "email": RecordingChannel("email"),
        "facebook": RecordingChannel("facebook", requires_recipients=False, external_id="fb-post-1"),
        "in_app": RecordingChannel("in_app"),
        "realtime": RecordingChannel("realtime", requires_recipients=False),
    }


@pytest.fixture
def dispatcher(db, channels) -> NotificationDispatcher:
    return NotificationDispatcher(db=db, channels=channels, registry=ConnectionRegistry(), timeout=1.0)


@pytest.fixture
def geocoder() -> FakeGeocoder:
    return FakeGeocoder()


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def photo() -> UploadedFile:
    return UploadedFile(filename="photo.jpg", content=b"\xff\xd8\xff fake jpeg", content_type="image/jpeg")


@pytest.fixture
def stations(db) -> Dict[str, Dict]:
    """One station ~3 km north of [121.05, 14.55] and one ~100 km away."""
    return {
        STATION_NEAR: db.add("police_stations", STATION_NEAR, {
            "name": "Station Near", "city": "City Y",
            "location": {"type": "Point", "coordinates": [121.05, 14.577]},
        }),
        STATION_FAR: db.add("police_stations", STATION_FAR, {
            "name": "Station Far", "city": "City Z",
            "location": {"type": "Point", "coordinates": [121.05, 15.45]},
        }),
    }


@pytest.fixture
def users(db) -> Dict[str, Dict]:
    return {
        "reporter": db.add("users", "reporter-1", {
            "name": "Rita Reporter", "email": "rita@example.com", "roles": ["user"],
            "city": "City Y", "device_tokens": ["tok-rita"],
            "location": {"type": "Point", "coordinates": [121.051, 14.551]},
        }),
        "officer_near": db.add("users", "officer-near", {
            "name": "Olivia Officer", "email": "olivia@police.test", "roles": ["police_officer"],
            "police_station": STATION_NEAR, "city": "City Y", "device_tokens": ["tok-olivia"],
        }),
        "admin_near": db.add("users", "admin-near", {
            "name": "Adam Admin", "email": "adam@police.test", "roles": ["police_admin"],
            "police_station": STATION_NEAR, "city": "City Y",
        }),
        "officer_far": db.add("users", "officer-far", {
            "name": "Fred Faraway", "email": "fred@police.test", "roles": ["police_officer"],
            "police_station": STATION_FAR, "city": "City Z",
        }),
        "citizen_far": db.add("users", "citizen-far", {
            "name": "Cora Citizen", "email": "cora@example.com", "roles": ["user"], "city": "City Z",
            "location": {"type": "Point", "coordinates": [121.05, 15.45]},
        }),
    }


@pytest.fixture
def reporter() -> Principal:
    return Principal(id="reporter-1", roles=[Role.USER], city="City Y", email="rita@example.com")


@pytest.fixture
def police_admin() -> Principal:
    return Principal(id="admin-near", roles=[Role.POLICE_ADMIN], police_station=STATION_NEAR, city="City Y")


@pytest.fixture
def police_officer() -> Principal:
    return Principal(id="officer-near", roles=[Role.POLICE_OFFICER], police_station=STATION_NEAR, city="City Y")


@pytest.fixture
def city_admin() -> Principal:
    return Principal(id="city-admin", roles=[Role.CITY_ADMIN], city="City Y")


@pytest.fixture
def super_admin() -> Principal:
    return Principal(id="root", roles=[Role.SUPER_ADMIN])


def make_report(db: FakeFirestore, report_id: str = "report-1", **overrides) -> Dict:
    """Store a report document shaped like ReportService.create_report output."""
    now = datetime.now(timezone.utc)
    data = {
        "case_id": f"MIS-{report_id[-7:]}",
        "reporter": "reporter-1",
        "type": "Missing",
        "person_involved": {
            "first_name": "Juan", "last_name": "Dela Cruz", "age": 12,
            "last_seen_date": "2025-01-10", "last_seen_time": "14:30",
            "last_known_location": "Near the public market",
            "most_recent_photo": {"url": "https://storage.test/p.jpg", "public_id": "reports/photos/p"},
            "status": "Still Missing",
        },
        "description": None,
        "location": {
            "type": "Point", "coordinates": [121.05, 14.55],
            "address": {"street_address": "123 Main St", "barangay": "Barangay X",
                        "city": "City Y", "zip_code": "1000"},
        },
        "assigned_police_station": STATION_NEAR,
        "station_assignment": {"station_id": STATION_NEAR, "assignment_type": "Automatic Assignment"},
        "assigned_officer": None,
        "status": "Pending",
        "status_history": [],
        "broadcast_consent": True,
        "has_updated_consent": False,
        "consent_update_history": [],
        "broadcast_history": [],
        "is_published": False,
        "publish_schedule": None,
        "additional_images": [],
        "follow_ups": [],
        "created_at": now,
        "updated_at": now,
    }
    data.update(overrides)
    return db.add("reports", report_id, data)


@pytest.fixture
async def client():
    """Async test client; route tests install dependency overrides themselves."""
    from agapay.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
