"""
Finder report service - reports from people who located a reported person.

A finder report never changes the original report; police review it and
mark it Verified or False Report.
"""

import logging
from typing import Dict, List, Optional, Sequence

from agapay.config.firebase import get_db
from agapay.core.errors import AgapayError, GeocodingFailure, InvalidTransition, PermissionDenied, ValidationError
from agapay.models.finder_report import MAX_FINDER_IMAGES, FinderReportCreate, FinderStatus, FinderVerification
from agapay.models.notification import NotificationType
from agapay.models.user import Principal, Role
from agapay.services.blob_store import UploadedFile, get_blob_store, validate_upload
from agapay.services.geocoding.resolver import get_geocoding_provider
from agapay.services.notification_dispatcher import (
    NotificationDispatcher,
    get_notification_dispatcher,
    person_name,
)
from agapay.services.report_service import REPORTS_COLLECTION, ReportService
from agapay.utils.firestore_helpers import (
    conditional_update,
    get_document,
    paginate,
    snapshot_to_dict,
    utcnow,
    where_filter,
    write_document,
)

logger = logging.getLogger(__name__)

FINDER_REPORTS_COLLECTION = "finder_reports"
FINDER_IMAGE_FOLDER = "finder_reports"


class FinderReportService:
    def __init__(self, db=None, geocoder=None, blob_store=None,
                 dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db or get_db()
        self.geocoder = geocoder or get_geocoding_provider()
        self.blob_store = blob_store or get_blob_store()
        self.dispatcher = dispatcher or get_notification_dispatcher()

    def _collection(self):
        return self.db.collection(FINDER_REPORTS_COLLECTION)

    def _can_view(self, principal: Principal, finder_report: Dict) -> bool:
        if finder_report.get("finder") == principal.id or principal.has_role(Role.SUPER_ADMIN):
            return True
        return ReportService.in_scope(principal, {
            "assigned_police_station": finder_report.get("police_station"),
            "location": {"address": {"city": finder_report.get("original_city")}},
        })

    async def create_finder_report(self, payload: FinderReportCreate, principal: Principal,
                                   image_uploads: Sequence[UploadedFile] = ()) -> Dict:
        if len(image_uploads) > MAX_FINDER_IMAGES:
            raise ValidationError(
                f"At most {MAX_FINDER_IMAGES} images are allowed",
                {"images": f"max {MAX_FINDER_IMAGES}"},
            )
        for index, upload in enumerate(image_uploads):
            validate_upload(upload, f"images[{index}]")

        original = snapshot_to_dict(
            get_document(self.db, REPORTS_COLLECTION, payload.original_report_id, "Original report")
        )

        geo = self.geocoder.geocode(payload.discovery_address.model_dump())
        if not geo.success:
            raise GeocodingFailure(geo.message or "Could not geocode discovery address",
                                   {"address": payload.discovery_address.model_dump()})

        uploaded = []
        doc_ref = self._collection().document()
        try:
            images = []
            for upload in image_uploads:
                ref = self.blob_store.upload(upload, FINDER_IMAGE_FOLDER)
                uploaded.append(ref.public_id)
                images.append(ref.model_dump())

            now = utcnow()
            data = {
                "original_report": original["id"],
                "original_case_id": original.get("case_id"),
                "police_station": original.get("assigned_police_station"),
                "original_city": ((original.get("location") or {}).get("address") or {}).get("city"),
                "finder": principal.id,
                "discovery_details": {
                    "location": {
                        "type": "Point",
                        "coordinates": list(geo.coordinates),
                        "address": payload.discovery_address.model_dump(),
                    },
                    "date_and_time": payload.discovery_date_time,
                },
                "person_condition": payload.person_condition.model_dump(mode="json"),
                "authorities_notified": payload.authorities_notified,
                "images": images,
                "status": FinderStatus.PENDING.value,
                "verified_by": None,
                "verification_notes": None,
                "created_at": now,
                "updated_at": now,
            }
            write_document(doc_ref, data)
        except AgapayError:
            if uploaded:
                self.blob_store.delete_many(uploaded)
            raise

        finder_report = {"id": doc_ref.id, **data}
        logger.info(f"Finder report {doc_ref.id} created for report {original['id']} by {principal.id}")

        try:
            result = await self.dispatcher.notify_station(
                NotificationType.FINDER_REPORT.value,
                original,
                original.get("assigned_police_station"),
                title="New finder report",
                body=f"New finder report submitted for case: {original.get('type')} - {person_name(original)}",
                template="finder_report",
                data={"finder_report_id": doc_ref.id},
            )
            finder_report["notifications"] = result.summary()
        except Exception as e:
            logger.error(f"Finder report {doc_ref.id} notification failed: {e}", exc_info=True)
            finder_report["notifications"] = {"error": str(e)}
        return finder_report

    async def verify_finder_report(self, finder_report_id: str, verification: FinderVerification,
                                   principal: Principal) -> Dict:
        if verification.status == FinderStatus.PENDING:
            raise ValidationError("Status must be Verified or False Report", {"status": verification.status.value})

        snapshot = get_document(self.db, FINDER_REPORTS_COLLECTION, finder_report_id, "Finder report")
        finder_report = snapshot_to_dict(snapshot)
        if not self._can_view(principal, finder_report) or finder_report.get("finder") == principal.id:
            raise PermissionDenied("Finder report belongs to another station", {"id": finder_report_id})
        if finder_report.get("status") != FinderStatus.PENDING.value:
            raise InvalidTransition("Finder report has already been reviewed",
                                    {"status": finder_report.get("status")})

        updates = {
            "status": verification.status.value,
            "verified_by": principal.id,
            "verification_notes": verification.notes,
            "verified_at": utcnow(),
            "updated_at": utcnow(),
        }
        conditional_update(self.db, snapshot, updates)
        finder_report.update(updates)
        logger.info(f"Finder report {finder_report_id} marked {verification.status.value} by {principal.id}")

        original_snapshot = self.db.collection(REPORTS_COLLECTION).document(finder_report["original_report"]).get()
        original = snapshot_to_dict(original_snapshot) if original_snapshot.exists else {"id": finder_report["original_report"]}
        status_text = verification.status.value.lower()
        data = {
            "finder_report_id": finder_report_id,
            "report_id": original["id"],
            "status": verification.status.value,
        }
        context = {"finder_report": finder_report, "report": original, "person_name": person_name(original),
                   "status": verification.status.value, "notes": verification.notes}

        notifications: Dict[str, Dict] = {}
        try:
            finder_result = await self.dispatcher.notify_users(
                NotificationType.FINDER_VERIFIED.value,
                self.dispatcher.load_users([finder_report.get("finder")]),
                "Finder Report Verification",
                f"Your finder report has been {status_text}",
                data=data,
                template="finder_verified",
                channels=("email", "in_app", "push"),
                context=context,
            )
            notifications["finder"] = finder_result.summary()
            officers = self.dispatcher.load_users([original.get("assigned_officer")])
            if officers:
                officer_result = await self.dispatcher.notify_users(
                    NotificationType.FINDER_VERIFIED.value,
                    officers,
                    "Finder Report Verification",
                    f"A finder report for your case has been {status_text}",
                    data=data,
                    channels=("in_app", "push"),
                    context=context,
                )
                notifications["officer"] = officer_result.summary()
        except Exception as e:
            logger.error(f"Finder report {finder_report_id} verification notices failed: {e}", exc_info=True)
            notifications["error"] = str(e)
        finder_report["notifications"] = notifications
        return finder_report

    def get_finder_report(self, finder_report_id: str, principal: Principal) -> Dict:
        finder_report = snapshot_to_dict(
            get_document(self.db, FINDER_REPORTS_COLLECTION, finder_report_id, "Finder report")
        )
        if not self._can_view(principal, finder_report):
            raise PermissionDenied("Not allowed to view this finder report", {"id": finder_report_id})
        return finder_report

    def list_for_report(self, report_id: str, principal: Principal) -> List[Dict]:
        query = where_filter(self._collection(), "original_report", "==", report_id)
        reports = [snapshot_to_dict(doc) for doc in query.stream()]
        visible = [r for r in reports if self._can_view(principal, r)]
        return sorted(visible, key=lambda r: r.get("created_at") or utcnow(), reverse=True)

    def list_finder_reports(self, principal: Principal, status: Optional[str] = None,
                            page: int = 1, limit: int = 10) -> Dict:
        query = self._collection()
        if not principal.has_role(Role.SUPER_ADMIN) and principal.police_station and principal.is_police:
            query = where_filter(query, "police_station", "==", principal.police_station)
        reports = [snapshot_to_dict(doc) for doc in query.stream()]
        reports = [
            r for r in reports
            if self._can_view(principal, r) and (not status or r.get("status") == status)
        ]
        reports.sort(key=lambda r: r.get("created_at") or utcnow(), reverse=True)
        result = paginate(reports, page, limit)
        return {"finder_reports": result.pop("items"), **result}


_finder_report_service: Optional[FinderReportService] = None


def get_finder_report_service() -> FinderReportService:
    global _finder_report_service
    if _finder_report_service is None:
        _finder_report_service = FinderReportService()
    return _finder_report_service
