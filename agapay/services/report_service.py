"""
Report service - lifecycle of incident reports in Firestore.

Flow for a new report:
1. Validate input (photo, consent, last-seen classification)
2. Geocode the address (failure aborts, nothing written)
3. Locate the responsible station
4. Upload media
5. Single persisting write
6. Notify station staff and the reporter (best-effort, never fails creation)

Guards that depend on the current status are written with a
last-update-time precondition, so check and write are one atomic step.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from google.api_core import exceptions as gexc
from pydantic import ValidationError as PydanticValidationError

from agapay.config.firebase import get_db
from agapay.core.errors import (
    AgapayError,
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
from agapay.models.notification import NotificationType
from agapay.models.report import (
    OwnerReportUpdate,
    PersonInvolved,
    ReportCreate,
    ReportFilters,
    TransferRequest,
)
from agapay.models.user import Principal, Role
from agapay.services.blob_store import UploadedFile, get_blob_store, validate_upload
from agapay.services.geocoding.resolver import get_geocoding_provider
from agapay.services.notification_dispatcher import (
    NotificationDispatcher,
    get_notification_dispatcher,
    person_name,
)
from agapay.services.station_locator import (
    MANUAL_SELECTION,
    STATIONS_COLLECTION,
    StationLocator,
)
from agapay.services.status_workflow import (
    OFFICER_ASSIGNABLE,
    ReportStatus,
    StatusWorkflowEngine,
)
from agapay.utils.firestore_helpers import (
    as_utc,
    conditional_update,
    get_document,
    paginate,
    snapshot_to_dict,
    update_with_retry,
    utcnow,
    where_filter,
    write_document,
)
from agapay.utils.last_seen import classify_missing_or_absent

logger = logging.getLogger(__name__)

REPORTS_COLLECTION = "reports"
TRANSFERRED_COLLECTION = "transferred_reports"
USERS_COLLECTION = "users"

PHOTO_FOLDER = "reports/photos"
ADDITIONAL_FOLDER = "reports/additional"


def generate_case_id(report_type: str, doc_id: str) -> str:
    """e.g. "MIS-a1b2c3d": type prefix + last 7 characters of the document id."""
    return f"{report_type[:3].upper()}-{doc_id[-7:]}"


def report_media_ids(report: Dict) -> List[str]:
    ids = []
    photo = (report.get("person_involved") or {}).get("most_recent_photo") or {}
    if photo.get("public_id"):
        ids.append(photo["public_id"])
    for image in report.get("additional_images") or []:
        if image.get("public_id"):
            ids.append(image["public_id"])
    return ids


def last_facebook_post_id(report: Dict) -> Optional[str]:
    for entry in reversed(report.get("broadcast_history") or []):
        if entry.get("action") == "published" and entry.get("facebook_post_id"):
            return entry["facebook_post_id"]
    return None


def report_city(report: Dict) -> str:
    return ((report.get("location") or {}).get("address") or {}).get("city") or ""


def scoped_query(db, principal: Principal):
    """Reports visible to a staff principal: own station, own city, or all for super admins."""
    query = db.collection(REPORTS_COLLECTION)
    if principal.has_role(Role.SUPER_ADMIN):
        return query
    if principal.has_role(Role.CITY_ADMIN):
        if not principal.city:
            raise PermissionDenied("City admin has no city assigned")
        return where_filter(query, "location.address.city", "==", principal.city)
    if principal.is_police:
        if not principal.police_station:
            raise PermissionDenied("Officer has no police station assigned")
        return where_filter(query, "assigned_police_station", "==", principal.police_station)
    raise PermissionDenied("Not allowed to list reports")


def scoped_reports(db, principal: Principal) -> List[Dict]:
    return [snapshot_to_dict(doc) for doc in scoped_query(db, principal).stream()]


def case_complexity_score(report_type: str, days_active: int, follow_ups: int, media_files: int) -> int:
    """Heuristic 1-10 complexity used for transfer analytics."""
    score = 5
    if days_active > 30:
        score += 2
    if days_active > 90:
        score += 1
    if follow_ups > 5:
        score += 1
    if follow_ups > 10:
        score += 1
    if report_type in ("Kidnapped", "Abducted"):
        score += 2
    if report_type == "Hit-and-Run":
        score += 1
    if media_files > 5:
        score += 1
    return min(max(score, 1), 10)


class ReportService:
    """
    Service for report lifecycle operations.
    """

    def __init__(self, db=None, geocoder=None, blob_store=None,
                 locator: Optional[StationLocator] = None,
                 dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db or get_db()
        self.geocoder = geocoder or get_geocoding_provider()
        self.blob_store = blob_store or get_blob_store()
        self.locator = locator or StationLocator(db=self.db)
        self.dispatcher = dispatcher or get_notification_dispatcher()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _reports(self):
        return self.db.collection(REPORTS_COLLECTION)

    def _get_snapshot(self, report_id: str):
        return get_document(self.db, REPORTS_COLLECTION, report_id, "Report")

    def _geocode(self, address: Address) -> List[float]:
        result = self.geocoder.geocode(address.model_dump())
        if not result.success:
            raise GeocodingFailure(
                result.message or "Could not geocode address",
                {"address": address.model_dump(), "provider": result.provider},
            )
        return result.coordinates

    @staticmethod
    def _ensure_owner(principal: Principal, report: Dict) -> None:
        if report.get("reporter") != principal.id:
            raise PermissionDenied("Only the reporter can change this report", {"report_id": report.get("id")})

    @staticmethod
    def in_scope(principal: Principal, report: Dict) -> bool:
        """Whether a staff principal is responsible for the report."""
        if principal.has_role(Role.SUPER_ADMIN):
            return True
        if principal.has_role(Role.CITY_ADMIN) and principal.city:
            if report_city(report).strip().lower() == principal.city.strip().lower():
                return True
        if principal.is_police and principal.police_station:
            return principal.police_station == report.get("assigned_police_station")
        return False

    def _ensure_scope(self, principal: Principal, report: Dict) -> None:
        if not self.in_scope(principal, report):
            raise PermissionDenied(
                "Report belongs to another station or city",
                {"report_id": report.get("id"), "station": report.get("assigned_police_station")},
            )

    async def _notify_safely(self, what: str, coro) -> Dict:
        """Run a notification step; a failure is logged and reported, never raised."""
        try:
            result = await coro
        except Exception as e:
            logger.error(f"Notification step '{what}' failed: {e}", exc_info=True)
            return {"error": str(e)}
        return result.summary()

    def _reporter(self, report: Dict) -> List[Dict]:
        return self.dispatcher.load_users([report.get("reporter")])

    async def _notify_reporter(self, report: Dict, event: NotificationType, title: str, body: str,
                               template: str = "generic", channels=("push", "in_app", "realtime")) -> Dict:
        return await self._notify_safely(
            f"{event.value} reporter",
            self.dispatcher.notify_users(
                event.value,
                self._reporter(report),
                title,
                body,
                data={"report_id": report["id"], "case_id": report.get("case_id", "")},
                template=template,
                channels=channels,
                context={"report": report, "person_name": person_name(report)},
            ),
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_report(self, payload: ReportCreate, principal: Principal,
                            photo: Optional[UploadedFile] = None,
                            additional_uploads: Sequence[UploadedFile] = ()) -> Dict:
        person = payload.person_involved
        if photo is None and person.most_recent_photo is None:
            raise ValidationError(
                "Most recent photo is required",
                {"person_involved.most_recent_photo": "required"},
            )
        if photo is not None:
            validate_upload(photo, "photo")
        for index, upload in enumerate(additional_uploads):
            validate_upload(upload, f"additional_images[{index}]")

        report_type = classify_missing_or_absent(
            person.last_seen_date, person.last_seen_time, payload.type.value
        )
        if report_type != payload.type.value:
            logger.info(f"Report type reclassified {payload.type.value} -> {report_type} from last seen time")

        coordinates = self._geocode(payload.address)
        location = self.locator.locate(payload.police_station_id, coordinates)

        uploaded: List[str] = []
        doc_ref = self._reports().document()
        try:
            photo_ref = person.most_recent_photo
            if photo is not None:
                photo_ref = self.blob_store.upload(photo, PHOTO_FOLDER)
                uploaded.append(photo_ref.public_id)
            additional_images = [image.model_dump() for image in payload.additional_images]
            for upload in additional_uploads:
                ref = self.blob_store.upload(upload, ADDITIONAL_FOLDER)
                uploaded.append(ref.public_id)
                additional_images.append(ref.model_dump())

            person_data = person.model_dump(mode="json")
            person_data["most_recent_photo"] = photo_ref.model_dump()
            now = utcnow()
            data = {
                "case_id": generate_case_id(report_type, doc_ref.id),
                "reporter": principal.id,
                "type": report_type,
                "person_involved": person_data,
                "description": payload.description,
                "location": {
                    "type": "Point",
                    "coordinates": list(coordinates),
                    "address": payload.address.model_dump(),
                },
                "assigned_police_station": location.station_id,
                "station_assignment": location.to_dict(),
                "assigned_officer": None,
                "status": ReportStatus.PENDING.value,
                "status_history": [StatusWorkflowEngine.create_status_history_entry(
                    from_status=None,
                    to_status=ReportStatus.PENDING.value,
                    changed_by=principal.id,
                    note="Report created",
                    timestamp=now,
                )],
                "broadcast_consent": payload.broadcast_consent,
                "has_updated_consent": False,
                "consent_update_history": [{
                    "previous_value": False,
                    "new_value": payload.broadcast_consent,
                    "updated_at": now,
                    "updated_by": principal.id,
                    "status_at_update": ReportStatus.PENDING.value,
                }],
                "broadcast_history": [],
                "is_published": False,
                "publish_schedule": None,
                "additional_images": additional_images,
                "follow_ups": [],
                "created_at": now,
                "updated_at": now,
            }
            write_document(doc_ref, data)
        except AgapayError:
            if uploaded:
                leftover = self.blob_store.delete_many(uploaded)
                if leftover:
                    logger.warning(f"Could not clean up uploaded blobs {leftover}")
            raise

        logger.info(
            f"Report saved to Firestore: {doc_ref.id} ({data['case_id']}), "
            f"station {location.station_id} [{location.assignment_type}]"
        )
        report = {"id": doc_ref.id, **data}
        report["notifications"] = await self._after_create(report)
        return report

    async def _after_create(self, report: Dict) -> Dict:
        station_id = report["assigned_police_station"]
        station_result = await self._notify_safely(
            "report created station",
            self.dispatcher.notify_station(
                NotificationType.REPORT_CREATED.value,
                report,
                station_id,
                title=f"New {report['type']} report",
                body=f"{person_name(report)} - case {report['case_id']} in "
                     f"{report['location']['address']['barangay']}, {report_city(report)}",
                template="report_created",
            ),
        )
        reporter_result = await self._notify_reporter(
            report,
            NotificationType.REPORT_CREATED,
            "Report submitted",
            f"Your report {report['case_id']} was received and forwarded to the police station.",
            channels=("in_app", "realtime"),
        )
        return {"station": station_result, "reporter": reporter_result}

    # ------------------------------------------------------------------
    # Staff transitions
    # ------------------------------------------------------------------

    async def assign_station(self, report_id: str, station_id: str, principal: Principal) -> Dict:
        snapshot = self._get_snapshot(report_id)
        report = snapshot_to_dict(snapshot)
        if report.get("status") != ReportStatus.PENDING.value:
            raise InvalidTransition(
                "Station can only be assigned while the report is Pending",
                {"status": report.get("status")},
            )
        self._ensure_scope(principal, report)
        station = snapshot_to_dict(get_document(self.db, STATIONS_COLLECTION, station_id, "Police station"))

        transition = StatusWorkflowEngine.validate_and_transition(
            report["status"], ReportStatus.ASSIGNED.value, principal.id,
            note=f"Assigned to {station.get('name', station_id)}",
        )
        updates = {
            "assigned_police_station": station_id,
            "status": transition["to_status"],
            "status_history": (report.get("status_history") or []) + [transition["history_entry"]],
            "updated_at": utcnow(),
        }
        conditional_update(self.db, snapshot, updates)
        report.update(updates)
        logger.info(f"Report {report_id} assigned to station {station_id} by {principal.id}")

        report["notifications"] = {
            "station": await self._notify_safely(
                "station assigned",
                self.dispatcher.notify_station(
                    NotificationType.STATION_ASSIGNED.value, report, station_id,
                    title="Report assigned to your station",
                    body=f"Case {report.get('case_id')} ({report.get('type')}) is now assigned to {station.get('name')}",
                    template="report_created",
                ),
            ),
            "reporter": await self._notify_reporter(
                report, NotificationType.STATUS_UPDATED, "Report assigned",
                f"Your report {report.get('case_id')} was assigned to {station.get('name')}.",
            ),
        }
        return report

    async def assign_officer(self, report_id: str, officer_id: str, principal: Principal) -> Dict:
        snapshot = self._get_snapshot(report_id)
        report = snapshot_to_dict(snapshot)
        current = report.get("status")
        if current not in [s.value for s in OFFICER_ASSIGNABLE]:
            raise InvalidTransition(
                "Officer can only be assigned once the report is Assigned or Under Investigation",
                {"status": current},
            )
        self._ensure_scope(principal, report)

        officer_snapshot = self.db.collection(USERS_COLLECTION).document(officer_id).get()
        if not officer_snapshot.exists:
            raise NotFoundError(f"Officer {officer_id} not found", {"officer_id": officer_id})
        officer = snapshot_to_dict(officer_snapshot)
        station_id = report.get("assigned_police_station")
        if Role.POLICE_OFFICER.value not in (officer.get("roles") or []) or officer.get("police_station") != station_id:
            raise OfficerMismatch(
                "Officer does not belong to the report's assigned station",
                {"officer_station": officer.get("police_station"), "report_station": station_id},
            )

        updates = {"assigned_officer": officer_id, "updated_at": utcnow()}
        if current != ReportStatus.UNDER_INVESTIGATION.value:
            transition = StatusWorkflowEngine.validate_and_transition(
                current, ReportStatus.UNDER_INVESTIGATION.value, principal.id,
                note=f"Officer {officer.get('name') or officer_id} assigned",
            )
            updates["status"] = transition["to_status"]
            updates["status_history"] = (report.get("status_history") or []) + [transition["history_entry"]]
        conditional_update(self.db, snapshot, updates)
        report.update(updates)
        logger.info(f"Officer {officer_id} assigned to report {report_id} by {principal.id}")

        report["notifications"] = {
            "officer": await self._notify_safely(
                "officer assigned",
                self.dispatcher.notify_users(
                    NotificationType.ASSIGNED_OFFICER.value, [officer],
                    "New case assigned",
                    f"You have been assigned to case {report.get('case_id')} ({person_name(report)})",
                    data={"report_id": report_id, "case_id": report.get("case_id", "")},
                    template="officer_assigned",
                    context={"report": report, "person_name": person_name(report)},
                ),
            ),
            "reporter": await self._notify_reporter(
                report, NotificationType.STATUS_UPDATED, "Officer assigned",
                f"An officer has been assigned to your report {report.get('case_id')}.",
            ),
        }
        return report

    async def update_status(self, report_id: str, new_status: str, principal: Principal,
                            note: Optional[str] = None) -> Dict:
        snapshot = self._get_snapshot(report_id)
        report = snapshot_to_dict(snapshot)
        self._ensure_scope(principal, report)
        transition = StatusWorkflowEngine.validate_and_transition(
            report.get("status"), new_status, principal.id, note=note
        )
        if not report.get("assigned_police_station"):
            raise InvalidTransition("Report has no assigned station", {"report_id": report_id})

        now = utcnow()
        updates = {
            "status": transition["to_status"],
            "status_history": (report.get("status_history") or []) + [transition["history_entry"]],
            "updated_at": now,
        }
        if note:
            updates["follow_ups"] = (report.get("follow_ups") or []) + [
                {"note": note, "added_by": principal.id, "created_at": now}
            ]
        if transition["to_status"] == ReportStatus.RESOLVED.value:
            updates["resolved_at"] = now
        conditional_update(self.db, snapshot, updates)
        report.update(updates)
        logger.info(f"Report {report_id} status {transition['from_status']} -> {transition['to_status']}")

        report["notifications"] = {
            "reporter": await self._notify_reporter(
                report, NotificationType.STATUS_UPDATED,
                "Report status updated",
                f"Your report {report.get('case_id')} is now {transition['to_status']}.",
                template="status_updated",
                channels=("push", "email", "in_app", "realtime"),
            ),
        }
        return report

    async def add_follow_up(self, report_id: str, note: str, principal: Principal) -> Dict:
        snapshot = self._get_snapshot(report_id)
        self._ensure_scope(principal, snapshot_to_dict(snapshot))
        if not note or not note.strip():
            raise ValidationError("Follow-up note is required", {"note": "required"})

        now = utcnow()
        entry = {"note": note.strip(), "added_by": principal.id, "created_at": now}
        report = update_with_retry(
            self.db, snapshot.reference,
            lambda current: {"follow_ups": (current.get("follow_ups") or []) + [entry], "updated_at": now},
        )
        report["notifications"] = {
            "reporter": await self._notify_reporter(
                report, NotificationType.FOLLOW_UP, "New update on your report",
                f"Police added an update to report {report.get('case_id')}.",
                channels=("in_app", "realtime"),
            ),
        }
        return report

    async def reassign_station(self, report_id: str, new_station_id: str, principal: Principal) -> Dict:
        snapshot = self._get_snapshot(report_id)
        report = snapshot_to_dict(snapshot)
        self._ensure_scope(principal, report)
        if report.get("status") == ReportStatus.RESOLVED.value:
            raise InvalidTransition("Resolved reports cannot be reassigned", {"status": report.get("status")})
        old_station_id = report.get("assigned_police_station")
        if old_station_id == new_station_id:
            raise InvalidTransition("Report is already assigned to this station", {"station_id": new_station_id})
        station = snapshot_to_dict(get_document(self.db, STATIONS_COLLECTION, new_station_id, "Police station"))

        now = utcnow()
        updates = {
            "assigned_police_station": new_station_id,
            "assigned_officer": None,
            "station_assignment": {
                "station_id": new_station_id,
                "station_name": station.get("name"),
                "distance_km": None,
                "estimated_road_km": None,
                "assignment_type": "Reassignment",
            },
            "reassignment_history": (report.get("reassignment_history") or []) + [{
                "from_station": old_station_id,
                "to_station": new_station_id,
                "reassigned_by": principal.id,
                "timestamp": now,
            }],
            "updated_at": now,
        }
        conditional_update(self.db, snapshot, updates)
        report.update(updates)
        logger.info(f"Report {report_id} reassigned {old_station_id} -> {new_station_id} by {principal.id}")

        body = f"Case {report.get('case_id')} has been reassigned to {station.get('name')}"
        report["notifications"] = {
            "old_station": await self._notify_safely(
                "reassigned old station",
                self.dispatcher.notify_station(
                    NotificationType.REPORT_REASSIGNED.value, report, old_station_id,
                    "Report reassigned", body, template="report_reassigned",
                    channels=("push", "in_app", "realtime"),
                ),
            ),
            "new_station": await self._notify_safely(
                "reassigned new station",
                self.dispatcher.notify_station(
                    NotificationType.REPORT_REASSIGNED.value, report, new_station_id,
                    "Report reassigned to your station", body, template="report_reassigned",
                ),
            ),
            "reporter": await self._notify_reporter(
                report, NotificationType.REPORT_REASSIGNED, "Report reassigned",
                f"Your report has been reassigned to {station.get('name')}.",
            ),
        }
        return report

    # ------------------------------------------------------------------
    # Reporter edits
    # ------------------------------------------------------------------

    async def owner_edit(self, report_id: str, changes: OwnerReportUpdate, principal: Principal,
                         photo: Optional[UploadedFile] = None) -> Dict:
        """Full edit by the reporter, only while the report is Pending."""
        snapshot = self._get_snapshot(report_id)
        report = snapshot_to_dict(snapshot)
        self._ensure_owner(principal, report)
        if report.get("status") != ReportStatus.PENDING.value:
            raise ForbiddenEdit(
                "Report can no longer be edited; only broadcast consent may be changed, once",
                {"status": report.get("status")},
            )

        fields = changes.model_dump(exclude_unset=True)
        if not fields and photo is None:
            raise ValidationError("No changes provided")
        if photo is not None:
            validate_upload(photo, "photo")

        now = utcnow()
        updates: Dict = {}

        person_data = dict(report.get("person_involved") or {})
        if "person_involved" in fields:
            merged = {**person_data, **(fields["person_involved"] or {})}
            try:
                person_data = PersonInvolved.model_validate(merged).model_dump(mode="json")
            except PydanticValidationError as e:
                raise ValidationError(
                    "Invalid person details",
                    {"person_involved." + ".".join(str(p) for p in err["loc"]): err["msg"] for err in e.errors()},
                )
            updates["person_involved"] = person_data

        requested_type = fields.get("type") or report.get("type")
        requested_type = getattr(requested_type, "value", requested_type)
        new_type = classify_missing_or_absent(
            person_data.get("last_seen_date"), person_data.get("last_seen_time"), requested_type
        )
        if new_type != report.get("type"):
            updates["type"] = new_type
            updates["case_id"] = generate_case_id(new_type, report_id)

        if changes.address is not None:
            coordinates = self._geocode(changes.address)
            updates["location"] = {
                "type": "Point",
                "coordinates": list(coordinates),
                "address": changes.address.model_dump(),
            }
            assignment = report.get("station_assignment") or {}
            explicit = report.get("assigned_police_station") if assignment.get("assignment_type") == MANUAL_SELECTION else None
            location = self.locator.locate(explicit, coordinates)
            updates["assigned_police_station"] = location.station_id
            updates["station_assignment"] = location.to_dict()

        if "description" in fields:
            updates["description"] = fields["description"]

        consent = fields.get("broadcast_consent")
        if consent is not None and consent != report.get("broadcast_consent"):
            updates["broadcast_consent"] = consent
            updates["consent_update_history"] = (report.get("consent_update_history") or []) + [{
                "previous_value": report.get("broadcast_consent", False),
                "new_value": consent,
                "updated_at": now,
                "updated_by": principal.id,
                "status_at_update": ReportStatus.PENDING.value,
            }]
            if not consent and report.get("publish_schedule"):
                updates["publish_schedule"] = None

        old_photo_id = None
        new_photo_id = None
        if photo is not None:
            ref = self.blob_store.upload(photo, PHOTO_FOLDER)
            new_photo_id = ref.public_id
            old_photo_id = (person_data.get("most_recent_photo") or {}).get("public_id")
            person_data = {**person_data, "most_recent_photo": ref.model_dump()}
            updates["person_involved"] = person_data

        updates["updated_at"] = now
        try:
            conditional_update(self.db, snapshot, updates)
        except AgapayError:
            if new_photo_id:
                self.blob_store.delete_many([new_photo_id])
            raise
        if old_photo_id and old_photo_id != new_photo_id:
            self.blob_store.delete_many([old_photo_id])

        report.update(updates)
        logger.info(f"Report {report_id} edited by owner: {sorted(k for k in updates if k != 'updated_at')}")
        return report

    async def update_consent(self, report_id: str, consent: bool, principal: Principal) -> Dict:
        """
        Change broadcast consent.

        Free while Pending; afterwards exactly one change is allowed, whatever
        the value. Withdrawing consent cancels a scheduled publication and
        takes a live report down.
        """
        snapshot = self._get_snapshot(report_id)
        report = snapshot_to_dict(snapshot)
        self._ensure_owner(principal, report)

        status = report.get("status")
        pending = status == ReportStatus.PENDING.value
        if not pending and report.get("has_updated_consent"):
            raise ForbiddenEdit(
                "Broadcast consent can only be updated once after the report is processed",
                {"status": status},
            )

        now = utcnow()
        updates = {
            "broadcast_consent": consent,
            "consent_update_history": (report.get("consent_update_history") or []) + [{
                "previous_value": report.get("broadcast_consent", False),
                "new_value": consent,
                "updated_at": now,
                "updated_by": principal.id,
                "status_at_update": status,
            }],
            "updated_at": now,
        }
        if not pending:
            updates["has_updated_consent"] = True

        retract_post_id = None
        if not consent:
            if report.get("publish_schedule"):
                updates["publish_schedule"] = None
            if report.get("is_published"):
                retract_post_id = last_facebook_post_id(report)
                updates["is_published"] = False
                updates["broadcast_history"] = (report.get("broadcast_history") or []) + [{
                    "action": "unpublished",
                    "timestamp": now,
                    "method": [],
                    "published_by": principal.id,
                    "notes": "Broadcast consent withdrawn by reporter",
                }]

        conditional_update(self.db, snapshot, updates)
        report.update(updates)
        logger.info(f"Report {report_id} consent set to {consent} by owner (status {status})")

        if retract_post_id:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.dispatcher.retract_social, retract_post_id)
        return report

    # ------------------------------------------------------------------
    # Transfer / delete
    # ------------------------------------------------------------------

    def _build_transfer_snapshot(self, report: Dict, request: TransferRequest, principal: Principal,
                                 station: Optional[Dict], officer: Optional[Dict],
                                 email_status: str, now: datetime) -> Dict:
        person = report.get("person_involved") or {}
        address = (report.get("location") or {}).get("address") or {}
        created_at = as_utc(report.get("created_at")) or now
        days_active = max(0, (now - created_at).days)
        follow_ups = len(report.get("follow_ups") or [])
        additional_count = len(report.get("additional_images") or [])
        has_photo = bool((person.get("most_recent_photo") or {}).get("url"))
        total_media = additional_count + (1 if has_photo else 0)
        hours_open = (now - created_at).total_seconds() / 3600

        return {
            "original_report_id": report["id"],
            "case_id": report.get("case_id"),
            "report_type": report.get("type"),
            "person_involved": {
                "first_name": person.get("first_name"),
                "last_name": person.get("last_name"),
                "age": person.get("age"),
                "gender": person.get("gender"),
            },
            "original_reporter": report.get("reporter"),
            "location": {
                "city": address.get("city"),
                "barangay": address.get("barangay"),
                "street_address": address.get("street_address"),
                "zip_code": address.get("zip_code"),
                "coordinates": (report.get("location") or {}).get("coordinates"),
            },
            "transfer_details": {
                "transferred_by": principal.id,
                "transferred_to": {
                    "recipient_email": request.recipient_email,
                    "recipient_department": request.recipient_department,
                    "recipient_name": request.recipient_name,
                    "recipient_contact": request.recipient_contact,
                },
                "transfer_date": now,
                "transfer_reason": request.transfer_reason.value,
                "transfer_notes": request.transfer_notes,
                "urgency_level": request.urgency_level.value,
            },
            "original_assignment": {
                "police_station": report.get("assigned_police_station"),
                "police_station_name": (station or {}).get("name"),
                "assigned_officer": report.get("assigned_officer"),
                "assigned_officer_name": (officer or {}).get("name"),
                "station_city": (station or {}).get("city"),
            },
            "case_timeline": {
                "report_created_at": created_at,
                "last_status_before_transfer": report.get("status"),
                "days_active_before_transfer": days_active,
                "total_follow_ups": follow_ups,
                "status_changes": max(0, len(report.get("status_history") or []) - 1),
            },
            "media_information": {
                "has_main_photo": has_photo,
                "additional_images_count": additional_count,
                "total_media_files": total_media,
            },
            "transfer_outcome": {
                "email_delivery_status": email_status,
                "email_delivered_at": now if email_status == "Delivered" else None,
            },
            "analytics": {
                "transfer_month": now.month,
                "transfer_year": now.year,
                "transfer_quarter": (now.month - 1) // 3 + 1,
                "transfer_day_of_week": now.isoweekday() % 7,
                "transfer_hour": now.hour,
                "case_complexity_score": case_complexity_score(
                    report.get("type") or "", days_active, follow_ups, total_media
                ),
                "is_urgent_transfer": hours_open <= 24,
            },
            "created_at": now,
        }

    async def transfer_report(self, report_id: str, request: TransferRequest, principal: Principal) -> Dict:
        """
        Hand the report to another agency.

        Writes a write-once archive document and removes the report in one
        batch. The receiving agency is emailed first so the delivery status
        is part of the archive from the start.
        """
        snapshot = self._get_snapshot(report_id)
        report = snapshot_to_dict(snapshot)
        self._ensure_scope(principal, report)

        station_snapshot = self.db.collection(STATIONS_COLLECTION).document(
            report.get("assigned_police_station") or "-"
        ).get()
        station = snapshot_to_dict(station_snapshot) if station_snapshot.exists else None
        officer = None
        if report.get("assigned_officer"):
            officers = self.dispatcher.load_users([report["assigned_officer"]])
            officer = officers[0] if officers else None

        email_result = await self._notify_safely(
            "transfer email",
            self.dispatcher.notify_users(
                NotificationType.REPORT_TRANSFERRED.value,
                [{"email": request.recipient_email, "name": request.recipient_name}],
                f"Case transfer: {report.get('case_id')} ({report.get('type')})",
                f"{principal.name or 'A police administrator'} transferred case {report.get('case_id')} "
                f"to {request.recipient_department}.",
                data={"report_id": report_id, "case_id": report.get("case_id", "")},
                template="transfer",
                channels=("email",),
                context={"report": report, "transfer": request.model_dump(mode="json"),
                         "station": station or {}, "person_name": person_name(report)},
            ),
        )
        email_status = "Delivered" if email_result.get("email") == "success" else "Failed"

        now = utcnow()
        archive = self._build_transfer_snapshot(report, request, principal, station, officer, email_status, now)
        archive_ref = self.db.collection(TRANSFERRED_COLLECTION).document()

        batch = self.db.batch()
        batch.set(archive_ref, archive)
        batch.delete(snapshot.reference, option=self.db.write_option(last_update_time=snapshot.update_time))
        try:
            batch.commit()
        except (gexc.FailedPrecondition, gexc.Aborted):
            raise InvalidTransition("Report was modified concurrently; reload and retry", {"id": report_id})
        except gexc.GoogleAPICallError as e:
            logger.error(f"Transfer of report {report_id} failed: {e}", exc_info=True)
            raise StorageFailure("Failed to transfer report")

        logger.info(
            f"Report {report_id} transferred to {request.recipient_department} "
            f"by {principal.id} (archive {archive_ref.id}, email {email_status})"
        )
        archive = {"id": archive_ref.id, **archive}
        archive["notifications"] = {
            "agency": email_result,
            "reporter": await self._notify_reporter(
                report, NotificationType.REPORT_TRANSFERRED, "Report transferred",
                f"Your report {report.get('case_id')} was transferred to {request.recipient_department}.",
                channels=("in_app", "realtime"),
            ),
        }
        return archive

    def delete_report(self, report_id: str, principal: Principal) -> Dict:
        snapshot = self._get_snapshot(report_id)
        report = snapshot_to_dict(snapshot)
        try:
            snapshot.reference.delete()
        except gexc.GoogleAPICallError as e:
            logger.error(f"Failed to delete report {report_id}: {e}", exc_info=True)
            raise StorageFailure("Failed to delete report")

        media_ids = report_media_ids(report)
        failed = self.blob_store.delete_many(media_ids)
        if failed:
            logger.warning(f"Report {report_id} deleted but media cleanup failed for {failed}")
        logger.info(f"Report {report_id} deleted by {principal.id}")
        return {"id": report_id, "deleted_media": len(media_ids) - len(failed), "failed_media": failed}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_report(self, report_id: str, principal: Principal) -> Dict:
        report = snapshot_to_dict(self._get_snapshot(report_id))
        if report.get("reporter") == principal.id or report.get("is_published") or self.in_scope(principal, report):
            return report
        raise PermissionDenied("Not allowed to view this report", {"report_id": report_id})

    def scoped_reports(self, principal: Principal) -> List[Dict]:
        return scoped_reports(self.db, principal)

    def list_reports(self, principal: Principal, filters: ReportFilters) -> Dict:
        start = as_utc(filters.start_date)
        end = as_utc(filters.end_date)
        reports = []
        for report in self.scoped_reports(principal):
            if filters.status and report.get("status") != filters.status:
                continue
            if filters.type and report.get("type") != filters.type.value:
                continue
            created_at = as_utc(report.get("created_at"))
            if start and (created_at is None or created_at < start):
                continue
            if end and (created_at is None or created_at > end):
                continue
            reports.append(report)
        reports.sort(key=_created_desc)
        page = paginate(reports, filters.page, filters.limit)
        return {"reports": page.pop("items"), **page}

    def list_user_reports(self, principal: Principal, page: int = 1, limit: int = 10) -> Dict:
        query = where_filter(self._reports(), "reporter", "==", principal.id)
        reports = sorted((snapshot_to_dict(doc) for doc in query.stream()), key=_created_desc)
        result = paginate(reports, page, limit)
        return {"reports": result.pop("items"), **result}

    def public_feed(self, page: int = 1, limit: int = 10, city: Optional[str] = None) -> Dict:
        query = where_filter(self._reports(), "is_published", "==", True)
        reports = []
        for doc in query.stream():
            report = snapshot_to_dict(doc)
            if city and report_city(report).strip().lower() != city.strip().lower():
                continue
            reports.append(_public_view(report))
        reports.sort(key=_created_desc)
        result = paginate(reports, page, limit)
        return {"reports": result.pop("items"), **result}


def _created_desc(report: Dict):
    created_at = as_utc(report.get("created_at"))
    return (-(created_at.timestamp()) if created_at else 0.0, report.get("id", ""))


def _public_view(report: Dict) -> Dict:
    person = report.get("person_involved") or {}
    return {
        "id": report["id"],
        "case_id": report.get("case_id"),
        "type": report.get("type"),
        "status": report.get("status"),
        "person_involved": {
            key: person.get(key)
            for key in (
                "first_name", "last_name", "age", "gender", "last_seen_date", "last_seen_time",
                "last_known_location", "last_known_clothing", "most_recent_photo", "status",
            )
        },
        "location": {"address": ((report.get("location") or {}).get("address") or {})},
        "assigned_police_station": report.get("assigned_police_station"),
        "created_at": report.get("created_at"),
    }


_report_service: Optional[ReportService] = None


def get_report_service() -> ReportService:
    global _report_service
    if _report_service is None:
        _report_service = ReportService()
    return _report_service
