"""
Broadcast Scheduler - publishes consented reports to the public channels.

publish() either stores a publish_schedule (future time) or runs now:
resolve the audience, fan out through the dispatcher, then mark the report
published and append one broadcast_history entry. Channel failures are
recorded in the entry, they never block publication.

Scheduled publications are picked up by run_due_publications(), which the
application runs every PUBLISH_SWEEP_INTERVAL_SECONDS. A publication may
therefore go out up to one interval late.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from agapay.config.firebase import get_db
from agapay.core.errors import (
    AgapayError,
    ConsentRequired,
    InvalidTransition,
    NoChannelSelected,
    PermissionDenied,
    ValidationError,
)
from agapay.core.settings import settings
from agapay.models.broadcast import CHANNEL_ALIASES, BroadcastChannel, BroadcastScope, PublishResult
from agapay.models.user import Principal
from agapay.services.notification_dispatcher import NotificationDispatcher, get_notification_dispatcher
from agapay.services.report_service import REPORTS_COLLECTION, ReportService, last_facebook_post_id
from agapay.utils.firestore_helpers import (
    as_utc,
    conditional_update,
    get_document,
    snapshot_to_dict,
    update_with_retry,
    utcnow,
    where_filter,
)

logger = logging.getLogger(__name__)


def normalize_channels(channels: Iterable[str]) -> List[str]:
    """
    Map requested channel names onto BroadcastChannel values.

    Order is preserved and duplicates collapse ("social" and "facebook" are
    the same channel).
    """
    normalized = []
    unknown = []
    for raw in channels or []:
        name = str(raw).strip().lower()
        channel = CHANNEL_ALIASES.get(name)
        if channel is None:
            unknown.append(raw)
        elif channel.value not in normalized:
            normalized.append(channel.value)
    if unknown:
        raise ValidationError(
            f"Unknown broadcast channel(s): {', '.join(map(str, unknown))}",
            {"channels": [c.value for c in BroadcastChannel]},
        )
    if not normalized:
        raise NoChannelSelected("Select at least one broadcast channel")
    return normalized


class BroadcastScheduler:
    def __init__(self, db=None, dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db or get_db()
        self.dispatcher = dispatcher or get_notification_dispatcher()

    def _get_snapshot(self, report_id: str):
        return get_document(self.db, REPORTS_COLLECTION, report_id, "Report")

    @staticmethod
    def _ensure_scope(principal: Optional[Principal], report: Dict) -> None:
        if principal is not None and not ReportService.in_scope(principal, report):
            raise PermissionDenied(
                "Report belongs to another station or city",
                {"report_id": report.get("id")},
            )

    async def publish(self, report_id: str, channels: Iterable[str], principal: Principal,
                      scheduled_at: Optional[datetime] = None,
                      scope: Optional[BroadcastScope] = None,
                      now: Optional[datetime] = None,
                      notes: Optional[str] = None) -> PublishResult:
        channel_names = normalize_channels(channels)
        snapshot = self._get_snapshot(report_id)
        report = snapshot_to_dict(snapshot)
        self._ensure_scope(principal, report)

        if not report.get("broadcast_consent"):
            raise ConsentRequired(
                "Reporter has not consented to a public broadcast",
                {"report_id": report_id},
            )

        now = now or utcnow()
        scheduled_at = as_utc(scheduled_at)
        if scheduled_at is not None and scheduled_at > now:
            schedule = {
                "scheduled_at": scheduled_at,
                "channels": channel_names,
                "scope": (scope or BroadcastScope()).model_dump(mode="json"),
                "requested_by": principal.id,
                "notes": notes,
                "created_at": now,
            }
            conditional_update(self.db, snapshot, {"publish_schedule": schedule, "updated_at": now})
            logger.info(f"Report {report_id} scheduled for broadcast at {scheduled_at.isoformat()} via {channel_names}")
            return PublishResult(
                report_id=report_id,
                state="scheduled",
                channels=channel_names,
                scheduled_at=scheduled_at,
            )

        return await self._publish_now(report, channel_names, principal.id, scope, now, notes)

    async def _publish_now(self, report: Dict, channel_names: List[str], actor_id: str,
                           scope: Optional[BroadcastScope], now: datetime,
                           notes: Optional[str] = None) -> PublishResult:
        report_id = report["id"]
        scope = scope or BroadcastScope()
        audience = self.dispatcher.resolve_broadcast_audience(report, scope)
        result = await self.dispatcher.broadcast(report, channel_names, audience)

        facebook = result.get(BroadcastChannel.FACEBOOK.value)
        entry = {
            "timestamp": now,
            "action": "published",
            "method": channel_names,
            "published_by": actor_id,
            "scope": scope.model_dump(mode="json"),
            "targeted_users": len(audience),
            "delivery_stats": {name: outcome.delivered for name, outcome in result.items()},
            "facebook_post_id": facebook.external_id if facebook is not None and facebook.ok else None,
            "results": result.summary(),
            "notes": notes,
        }

        def build(current: Dict) -> Dict:
            if not current.get("broadcast_consent"):
                raise ConsentRequired(
                    "Reporter withdrew broadcast consent during publication",
                    {"report_id": report_id},
                )
            return {
                "is_published": True,
                "publish_schedule": None,
                "broadcast_history": (current.get("broadcast_history") or []) + [entry],
                "updated_at": now,
            }

        try:
            update_with_retry(self.db, self.db.collection(REPORTS_COLLECTION).document(report_id), build)
        except ConsentRequired:
            if entry["facebook_post_id"]:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, self.dispatcher.retract_social, entry["facebook_post_id"])
            logger.warning(f"Publication of report {report_id} dropped: consent withdrawn while sending")
            raise
        logger.info(
            f"Report {report_id} published by {actor_id} to {len(audience)} users: {result.summary()}"
        )
        return PublishResult(
            report_id=report_id,
            state="published",
            channels=channel_names,
            results=result.summary(),
            targeted_users=len(audience),
            history_entry=entry,
        )

    async def unpublish(self, report_id: str, principal: Principal, notes: Optional[str] = None) -> Dict:
        snapshot = self._get_snapshot(report_id)
        report = snapshot_to_dict(snapshot)
        self._ensure_scope(principal, report)
        if not report.get("is_published"):
            raise InvalidTransition("Report is not published", {"report_id": report_id})

        post_id = last_facebook_post_id(report)
        now = utcnow()
        entry = {
            "timestamp": now,
            "action": "unpublished",
            "method": [],
            "published_by": principal.id,
            "facebook_post_id": post_id,
            "notes": notes,
        }
        updates = {
            "is_published": False,
            "broadcast_history": (report.get("broadcast_history") or []) + [entry],
            "updated_at": now,
        }
        conditional_update(self.db, snapshot, updates)
        report.update(updates)

        retracted = False
        if post_id:
            loop = asyncio.get_running_loop()
            retracted = await loop.run_in_executor(None, self.dispatcher.retract_social, post_id)
        logger.info(f"Report {report_id} unpublished by {principal.id} (facebook retracted: {retracted})")
        return report

    def cancel_schedule(self, report_id: str, principal: Principal) -> Dict:
        snapshot = self._get_snapshot(report_id)
        report = snapshot_to_dict(snapshot)
        self._ensure_scope(principal, report)
        if not report.get("publish_schedule"):
            raise InvalidTransition("Report has no scheduled broadcast", {"report_id": report_id})
        updates = {"publish_schedule": None, "updated_at": utcnow()}
        conditional_update(self.db, snapshot, updates)
        report.update(updates)
        logger.info(f"Scheduled broadcast of report {report_id} cancelled by {principal.id}")
        return report

    def get_broadcast_history(self, report_id: str, principal: Principal) -> Dict:
        report = snapshot_to_dict(self._get_snapshot(report_id))
        self._ensure_scope(principal, report)
        return {
            "report_id": report_id,
            "is_published": bool(report.get("is_published")),
            "publish_schedule": report.get("publish_schedule"),
            "broadcast_history": report.get("broadcast_history") or [],
        }

    def _drop_schedule(self, doc_ref, now: datetime) -> None:
        update_with_retry(
            self.db, doc_ref,
            lambda current: {"publish_schedule": None, "updated_at": now} if current.get("publish_schedule") else None,
        )

    async def run_due_publications(self, now: Optional[datetime] = None) -> Dict[str, str]:
        """Publish every report whose schedule is due. Returns report id -> outcome."""
        now = now or utcnow()
        query = where_filter(self.db.collection(REPORTS_COLLECTION), "publish_schedule.scheduled_at", "<=", now)
        outcomes: Dict[str, str] = {}
        for doc in query.stream():
            report = snapshot_to_dict(doc)
            schedule = report.get("publish_schedule") or {}
            report_id = report["id"]

            if not report.get("broadcast_consent"):
                self._drop_schedule(doc.reference, now)
                logger.info(f"Skipped scheduled broadcast of {report_id}: consent withdrawn")
                outcomes[report_id] = "skipped"
                continue

            try:
                scope = BroadcastScope.model_validate(schedule.get("scope") or {})
                result = await self._publish_now(
                    report,
                    normalize_channels(schedule.get("channels") or []),
                    schedule.get("requested_by") or "scheduler",
                    scope,
                    now,
                    schedule.get("notes"),
                )
                outcomes[report_id] = result.state
            except ConsentRequired:
                self._drop_schedule(doc.reference, now)
                outcomes[report_id] = "skipped"
            except AgapayError as e:
                logger.error(f"Scheduled broadcast of {report_id} failed: {e.message}", exc_info=True)
                outcomes[report_id] = "failed"
        if outcomes:
            logger.info(f"Publish sweep at {now.isoformat()}: {outcomes}")
        return outcomes

    async def sweep_forever(self, interval: Optional[float] = None) -> None:
        interval = interval or settings.PUBLISH_SWEEP_INTERVAL_SECONDS
        logger.info(f"Publish sweep started (every {interval}s)")
        while True:
            try:
                await self.run_due_publications()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Publish sweep failed: {e}", exc_info=True)
            await asyncio.sleep(interval)


_scheduler: Optional[BroadcastScheduler] = None


def get_broadcast_scheduler() -> BroadcastScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = BroadcastScheduler()
    return _scheduler
