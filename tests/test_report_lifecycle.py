"""
Tests for the report lifecycle: creation, staff transitions, owner edits,
consent, transfer and deletion.
"""

from datetime import date, datetime, timedelta, timezone

import pytest
from google.api_core import exceptions as gexc

from agapay.core.errors import (
    ForbiddenEdit,
    GeocodingFailure,
    InvalidTransition,
    NotFoundError,
    OfficerMismatch,
    PermissionDenied,
    StorageFailure,
    ValidationError,
)
from agapay.models.base import Address
from agapay.models.report import OwnerReportUpdate, PersonInvolved, ReportCreate, ReportFilters, TransferRequest
from agapay.services.report_service import ReportService, case_complexity_score, generate_case_id
from agapay.services.station_locator import StationLocator
from agapay.utils.firestore_helpers import conditional_update
from conftest import STATION_FAR, STATION_NEAR, FailingChannel, make_report


@pytest.fixture
def service(db, geocoder, blob_store, dispatcher):
    return ReportService(db=db, geocoder=geocoder, blob_store=blob_store,
                         locator=StationLocator(db=db), dispatcher=dispatcher)


def report_payload(**overrides) -> ReportCreate:
    data = {
        "type": "Missing",
        "person_involved": PersonInvolved(
            first_name="Juan",
            last_name="Dela Cruz",
            age=12,
            last_seen_date=date(2025, 1, 10),
            last_seen_time="14:30",
            last_known_location="Near the public market",
        ),
        "address": Address(street_address="123 Main St", barangay="Barangay X", city="City Y", zip_code="1000"),
        "broadcast_consent": True,
    }
    data.update(overrides)
    return ReportCreate(**data)


# ============================================================================
# CREATE
# ============================================================================

class TestCreateReport:
    async def test_scenario_nearest_station_prefilled(self, service, db, stations, users, reporter, photo, channels):
        report = await service.create_report(report_payload(), reporter, photo=photo)

        assert report["status"] == "Pending"
        assert report["assigned_police_station"] == STATION_NEAR
        assert report["station_assignment"]["assignment_type"] == "Automatic Assignment"
        assert report["location"]["coordinates"] == [121.05, 14.55]
        assert report["case_id"] == generate_case_id("Missing", report["id"])

        stored = db.read("reports", report["id"])
        assert stored["assigned_police_station"] == STATION_NEAR
        assert stored["broadcast_history"] == []
        assert stored["consent_update_history"][0]["new_value"] is True
        assert stored["person_involved"]["most_recent_photo"]["url"].startswith("https://storage.test/")

    async def test_station_staff_notified(self, service, stations, users, reporter, photo, channels):
        report = await service.create_report(report_payload(), reporter, photo=photo)

        push_recipients = {u["id"] for u in channels["push"].sent[0]["recipients"]}
        assert push_recipients == {"officer-near", "admin-near"}
        assert report["notifications"]["station"]["push"] == "success"
        assert "station:" + STATION_NEAR in channels["realtime"].sent[0]["message"].rooms

    async def test_channel_failure_does_not_fail_creation(self, service, dispatcher, db, stations, users,
                                                          reporter, photo):
        dispatcher.channels["email"] = FailingChannel("email")
        report = await service.create_report(report_payload(), reporter, photo=photo)

        assert db.read("reports", report["id"]) is not None
        assert report["notifications"]["station"]["email"] == "failure"
        assert report["notifications"]["station"]["push"] == "success"

    async def test_recent_last_seen_becomes_absent(self, service, stations, reporter, photo):
        person = PersonInvolved(
            first_name="Ana", last_name="Santos",
            last_seen_date=datetime.now(timezone.utc).date(), last_seen_time="00:00",
            last_known_location="School gate",
        )
        report = await service.create_report(report_payload(person_involved=person), reporter, photo=photo)
        assert report["type"] == "Absent"
        assert report["case_id"].startswith("ABS-")

    async def test_explicit_station(self, service, stations, reporter, photo):
        report = await service.create_report(report_payload(police_station_id=STATION_FAR), reporter, photo=photo)
        assert report["assigned_police_station"] == STATION_FAR
        assert report["station_assignment"]["assignment_type"] == "Manual Selection"

    async def test_photo_required(self, service, db, stations, reporter):
        with pytest.raises(ValidationError):
            await service.create_report(report_payload(), reporter)
        assert db.all("reports") == []

    async def test_geocoding_failure_writes_nothing(self, service, db, geocoder, blob_store, stations,
                                                    reporter, photo):
        geocoder.coordinates = None
        with pytest.raises(GeocodingFailure):
            await service.create_report(report_payload(), reporter, photo=photo)
        assert db.all("reports") == []
        assert blob_store.blobs == {}

    async def test_no_stations_writes_nothing(self, service, db, blob_store, reporter, photo):
        with pytest.raises(NotFoundError):
            await service.create_report(report_payload(), reporter, photo=photo)
        assert blob_store.blobs == {}

    async def test_write_failure_cleans_up_blobs(self, service, db, blob_store, stations, reporter, photo):
        db.fail_writes = gexc.ServiceUnavailable("firestore down")
        with pytest.raises(StorageFailure):
            await service.create_report(report_payload(), reporter, photo=photo, additional_uploads=[photo])
        assert len(blob_store.deleted) == 2
        assert blob_store.blobs == {}


# ============================================================================
# STAFF TRANSITIONS
# ============================================================================

class TestStaffTransitions:
    async def test_assign_station_only_from_pending(self, service, db, stations, users, police_admin):
        make_report(db)
        report = await service.assign_station("report-1", STATION_NEAR, police_admin)
        assert report["status"] == "Assigned"
        assert report["status_history"][-1]["to"] == "Assigned"

        with pytest.raises(InvalidTransition):
            await service.assign_station("report-1", STATION_NEAR, police_admin)

    async def test_stale_snapshot_is_rejected(self, db):
        make_report(db)
        snapshot = db.collection("reports").document("report-1").get()
        db.collection("reports").document("report-1").update({"status": "Assigned"})

        with pytest.raises(InvalidTransition):
            conditional_update(db, snapshot, {"status": "Assigned", "assigned_police_station": STATION_FAR})
        assert db.read("reports", "report-1")["assigned_police_station"] == STATION_NEAR

    async def test_scenario_officer_from_other_station(self, service, db, stations, users, super_admin):
        make_report(db, assigned_police_station=STATION_FAR, status="Assigned")
        before = db.read("reports", "report-1")

        with pytest.raises(OfficerMismatch):
            await service.assign_officer("report-1", "officer-near", super_admin)
        assert db.read("reports", "report-1") == before

    async def test_assign_officer_moves_to_under_investigation(self, service, db, stations, users,
                                                               police_admin, channels):
        make_report(db, status="Assigned")
        report = await service.assign_officer("report-1", "officer-near", police_admin)

        assert report["status"] == "Under Investigation"
        assert report["assigned_officer"] == "officer-near"
        officer_push = [s for s in channels["push"].sent if s["recipients"][0]["id"] == "officer-near"]
        assert officer_push

    async def test_assign_officer_requires_assigned_status(self, service, db, stations, users, police_admin):
        make_report(db)
        with pytest.raises(InvalidTransition):
            await service.assign_officer("report-1", "officer-near", police_admin)

    async def test_unknown_officer(self, service, db, stations, users, police_admin):
        make_report(db, status="Assigned")
        with pytest.raises(NotFoundError):
            await service.assign_officer("report-1", "ghost", police_admin)

    async def test_resolved_cannot_go_back(self, service, db, users, police_officer):
        make_report(db, status="Resolved")
        with pytest.raises(InvalidTransition):
            await service.update_status("report-1", "Assigned", police_officer)
        assert db.read("reports", "report-1")["status"] == "Resolved"

    async def test_same_status_is_invalid(self, service, db, users, police_officer):
        make_report(db, status="Under Investigation")
        with pytest.raises(InvalidTransition):
            await service.update_status("report-1", "Under Investigation", police_officer)

    async def test_update_status_with_note(self, service, db, users, police_officer, channels):
        make_report(db, status="Under Investigation")
        report = await service.update_status("report-1", "Resolved", police_officer, note="Found safe")

        assert report["status"] == "Resolved"
        assert report["resolved_at"] is not None
        assert report["follow_ups"][-1]["note"] == "Found safe"
        assert channels["push"].sent[-1]["recipients"][0]["id"] == "reporter-1"

    async def test_other_station_cannot_update(self, service, db, users, police_officer):
        make_report(db, assigned_police_station=STATION_FAR, status="Assigned")
        with pytest.raises(PermissionDenied):
            await service.update_status("report-1", "Resolved", police_officer)

    async def test_add_follow_up(self, service, db, users, police_officer):
        make_report(db, status="Assigned")
        await service.add_follow_up("report-1", "Checked CCTV", police_officer)
        await service.add_follow_up("report-1", "Interviewed vendor", police_officer)
        notes = [f["note"] for f in db.read("reports", "report-1")["follow_ups"]]
        assert notes == ["Checked CCTV", "Interviewed vendor"]

    async def test_reassign_clears_officer(self, service, db, stations, users, city_admin):
        make_report(db, status="Under Investigation", assigned_officer="officer-near")
        report = await service.reassign_station("report-1", STATION_FAR, city_admin)

        assert report["assigned_police_station"] == STATION_FAR
        assert report["assigned_officer"] is None
        assert report["status"] == "Under Investigation"
        assert report["reassignment_history"][-1]["from_station"] == STATION_NEAR

    async def test_resolved_cannot_be_reassigned(self, service, db, stations, city_admin):
        make_report(db, status="Resolved")
        with pytest.raises(InvalidTransition):
            await service.reassign_station("report-1", STATION_FAR, city_admin)


# ============================================================================
# OWNER EDITS AND CONSENT
# ============================================================================

class TestOwnerEdits:
    async def test_full_edit_while_pending(self, service, db, stations, reporter, geocoder):
        make_report(db)
        changes = OwnerReportUpdate(
            description="Wearing a red cap",
            person_involved={"age": 13},
            address=Address(street_address="9 Side St", barangay="Barangay X", city="City Y", zip_code="1000"),
        )
        report = await service.owner_edit("report-1", changes, reporter)

        assert report["description"] == "Wearing a red cap"
        assert report["person_involved"]["age"] == 13
        assert report["person_involved"]["first_name"] == "Juan"
        assert report["location"]["address"]["street_address"] == "9 Side St"
        assert len(geocoder.calls) == 1

    async def test_edit_after_pending_is_forbidden(self, service, db, reporter):
        make_report(db, status="Assigned")
        with pytest.raises(ForbiddenEdit):
            await service.owner_edit("report-1", OwnerReportUpdate(description="late edit"), reporter)

    async def test_only_reporter_can_edit(self, service, db, police_admin):
        make_report(db)
        with pytest.raises(PermissionDenied):
            await service.owner_edit("report-1", OwnerReportUpdate(description="x"), police_admin)

    async def test_invalid_person_fields(self, service, db, reporter):
        make_report(db)
        with pytest.raises(ValidationError):
            await service.owner_edit("report-1", OwnerReportUpdate(person_involved={"age": -4}), reporter)

    async def test_photo_replacement_deletes_old_blob(self, service, db, blob_store, reporter, photo):
        make_report(db)
        report = await service.owner_edit("report-1", OwnerReportUpdate(), reporter, photo=photo)
        assert report["person_involved"]["most_recent_photo"]["public_id"] != "reports/photos/p"
        assert blob_store.deleted == ["reports/photos/p"]


class TestConsent:
    async def test_single_consent_update_after_pending(self, service, db, reporter):
        make_report(db, status="Assigned", broadcast_consent=True)

        report = await service.update_consent("report-1", False, reporter)
        assert report["has_updated_consent"] is True
        assert report["broadcast_consent"] is False

        with pytest.raises(ForbiddenEdit):
            await service.update_consent("report-1", False, reporter)
        with pytest.raises(ForbiddenEdit):
            await service.update_consent("report-1", True, reporter)
        assert len(db.read("reports", "report-1")["consent_update_history"]) == 1

    async def test_free_changes_while_pending(self, service, db, reporter):
        make_report(db)
        await service.update_consent("report-1", False, reporter)
        report = await service.update_consent("report-1", True, reporter)
        assert report["has_updated_consent"] is False
        assert len(report["consent_update_history"]) == 2

    async def test_withdrawal_takes_report_down(self, service, db, reporter, channels):
        make_report(
            db, status="Assigned", is_published=True,
            broadcast_history=[{"action": "published", "facebook_post_id": "fb-123", "method": ["facebook"]}],
            publish_schedule={"scheduled_at": datetime.now(timezone.utc) + timedelta(days=1), "channels": ["push"]},
        )
        report = await service.update_consent("report-1", False, reporter)

        assert report["is_published"] is False
        assert report["publish_schedule"] is None
        assert report["broadcast_history"][-1]["action"] == "unpublished"
        assert channels["facebook"].retracted == ["fb-123"]


# ============================================================================
# TRANSFER AND DELETE
# ============================================================================

class TestTransferAndDelete:
    REQUEST = TransferRequest(
        recipient_email="nbi@agency.test",
        recipient_department="NBI Missing Persons",
        transfer_reason="Other",
        urgency_level="High",
    )

    async def test_transfer_archives_and_removes(self, service, db, stations, users, police_admin, channels):
        make_report(db, status="Under Investigation", follow_ups=[{"note": "a"}])
        archive = await service.transfer_report("report-1", self.REQUEST, police_admin)

        assert db.read("reports", "report-1") is None
        stored = db.read("transferred_reports", archive["id"])
        assert stored["original_report_id"] == "report-1"
        assert stored["transfer_details"]["transferred_to"]["recipient_email"] == "nbi@agency.test"
        assert stored["transfer_outcome"]["email_delivery_status"] == "Delivered"
        assert stored["case_timeline"]["total_follow_ups"] == 1
        email = [s for s in channels["email"].sent if s["recipients"][0].get("email") == "nbi@agency.test"]
        assert email

    async def test_transfer_survives_email_failure(self, service, dispatcher, db, stations, users, police_admin):
        dispatcher.channels["email"] = FailingChannel("email")
        make_report(db, status="Assigned")
        archive = await service.transfer_report("report-1", self.REQUEST, police_admin)
        assert archive["transfer_outcome"]["email_delivery_status"] == "Failed"
        assert db.read("reports", "report-1") is None

    def test_complexity_score_bounds(self):
        assert case_complexity_score("Missing", 0, 0, 0) == 5
        assert case_complexity_score("Kidnapped", 120, 12, 8) == 10

    def test_delete_cascades_media(self, service, db, blob_store, super_admin):
        make_report(db, additional_images=[{"url": "https://storage.test/a", "public_id": "reports/additional/a"}])
        blob_store.fail_delete.add("reports/additional/a")

        result = service.delete_report("report-1", super_admin)

        assert db.read("reports", "report-1") is None
        assert blob_store.deleted == ["reports/photos/p"]
        assert result["failed_media"] == ["reports/additional/a"]


# ============================================================================
# QUERIES
# ============================================================================

class TestQueries:
    def test_station_scoping(self, service, db, police_officer):
        make_report(db, "report-1")
        make_report(db, "report-2", assigned_police_station=STATION_FAR)
        result = service.list_reports(police_officer, ReportFilters())
        assert [r["id"] for r in result["reports"]] == ["report-1"]

    def test_filters_and_pagination(self, service, db, super_admin):
        base = datetime(2025, 3, 1, tzinfo=timezone.utc)
        for i in range(5):
            make_report(db, f"report-{i}", status="Assigned" if i % 2 else "Pending",
                        created_at=base + timedelta(days=i))
        result = service.list_reports(super_admin, ReportFilters(status="Pending", limit=2))
        assert [r["id"] for r in result["reports"]] == ["report-4", "report-2"]
        assert result["total"] == 3
        assert result["has_more"] is True

    def test_user_cannot_list_station_reports(self, service, reporter):
        with pytest.raises(PermissionDenied):
            service.list_reports(reporter, ReportFilters())

    def test_public_feed_only_published(self, service, db):
        make_report(db, "report-1", is_published=True)
        make_report(db, "report-2")
        feed = service.public_feed()
        assert [r["id"] for r in feed["reports"]] == ["report-1"]
        assert "reporter" not in feed["reports"][0]

    def test_get_report_visibility(self, service, db, reporter, police_officer):
        make_report(db, "report-1", reporter="someone-else", assigned_police_station=STATION_FAR)
        with pytest.raises(PermissionDenied):
            service.get_report("report-1", reporter)
        with pytest.raises(PermissionDenied):
            service.get_report("report-1", police_officer)
