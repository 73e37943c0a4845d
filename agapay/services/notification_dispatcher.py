"""
Notification Dispatcher - fans a report event out across channels.

Every channel call is isolated: a failure or timeout in one channel never
prevents, delays past its timeout, or rolls back another, and never fails
the calling operation. The primary write has already committed before any
dispatch starts. Results are reported per channel; nothing is retried here.
"""

import asyncio
import logging
from typing import Awaitable, Dict, Iterable, List, Optional, Sequence

from agapay.config.firebase import get_db
from agapay.core.errors import ChannelDispatchFailure
from agapay.core.settings import settings
from agapay.models.broadcast import BroadcastScope, ScopeType
from agapay.services.channels.base import ChannelMessage, ChannelOutcome, NotificationChannel
from agapay.services.connection_registry import ConnectionRegistry, city_room, station_room, user_room
from agapay.services.geo import distance_km
from agapay.utils.firestore_helpers import snapshot_to_dict, where_filter

logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"
STAFF_ROLES = ("police_officer", "police_admin")

STATION_CHANNELS = ("push", "email", "in_app", "realtime")
USER_CHANNELS = ("push", "in_app", "realtime")


class DispatchResult(dict):
    """channel name -> ChannelOutcome"""

    def summary(self) -> Dict[str, str]:
        return {name: outcome.status.value for name, outcome in self.items()}

    def to_dict(self) -> Dict[str, Dict]:
        return {name: outcome.to_dict() for name, outcome in self.items()}

    @property
    def succeeded(self) -> List[str]:
        return [name for name, outcome in self.items() if outcome.ok]

    @property
    def failed(self) -> List[str]:
        return [name for name, outcome in self.items() if not outcome.ok]


async def settle_all(calls: Dict[str, Awaitable], timeout: float) -> DispatchResult:
    """
    Await every call concurrently and report each outcome.

    Never short-circuits: exceptions and timeouts become failure outcomes
    for their own channel only.
    """
    names = list(calls)
    results = await asyncio.gather(
        *(asyncio.wait_for(calls[name], timeout) for name in names),
        return_exceptions=True,
    )

    outcomes = DispatchResult()
    for name, result in zip(names, results):
        if isinstance(result, ChannelOutcome):
            outcomes[name] = result
        elif isinstance(result, asyncio.TimeoutError):
            outcomes[name] = ChannelOutcome.failure(name, f"timed out after {timeout}s")
        elif isinstance(result, ChannelDispatchFailure):
            outcomes[name] = ChannelOutcome.failure(name, result.message)
        elif isinstance(result, BaseException):
            outcomes[name] = ChannelOutcome.failure(name, f"{type(result).__name__}: {result}")
        else:
            outcomes[name] = ChannelOutcome.failure(name, f"unexpected result {result!r}")
    return outcomes


def report_data(report: Dict) -> Dict[str, str]:
    """Small JSON-safe payload identifying a report in notifications."""
    return {
        "report_id": report.get("id") or "",
        "case_id": report.get("case_id") or "",
        "type": report.get("type") or "",
        "status": report.get("status") or "",
    }


def person_name(report: Dict) -> str:
    person = report.get("person_involved") or {}
    return f"{person.get('first_name', '')} {person.get('last_name', '')}".strip() or "Unknown person"


def report_photo_url(report: Dict) -> Optional[str]:
    photo = (report.get("person_involved") or {}).get("most_recent_photo") or {}
    return photo.get("url")


def broadcast_message(report: Dict) -> ChannelMessage:
    person = report.get("person_involved") or {}
    address = (report.get("location") or {}).get("address") or {}
    report_type = (report.get("type") or "Alert").upper()
    name = person_name(report)

    lines = [f"{name}" + (f", {person['age']} years old" if person.get("age") is not None else "")]
    if person.get("last_seen_date"):
        seen = person["last_seen_date"] + (f" {person['last_seen_time']}" if person.get("last_seen_time") else "")
        lines.append(f"Last seen: {seen}")
    if person.get("last_known_location"):
        lines.append(f"Last known location: {person['last_known_location']}")
    if address:
        lines.append(f"Area: {address.get('barangay', '')}, {address.get('city', '')}".strip(", "))
    if person.get("last_known_clothing"):
        lines.append(f"Clothing: {person['last_known_clothing']}")
    lines.append(f"Case ID: {report.get('case_id', '')}")
    lines.append("If you have any information, please contact the nearest police station.")

    return ChannelMessage(
        event="BROADCAST",
        title=f"{report_type} ALERT: {name}",
        body="\n".join(lines),
        data=report_data(report),
        image_url=report_photo_url(report),
        template="broadcast",
        context={"report": report, "person": person, "address": address},
    )


class NotificationDispatcher:
    def __init__(self, db=None, channels: Optional[Dict[str, NotificationChannel]] = None,
                 registry: Optional[ConnectionRegistry] = None, timeout: Optional[float] = None):
        self.db = db or get_db()
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.channels = channels if channels is not None else default_channels(self.db, self.registry)
        self.timeout = timeout or settings.CHANNEL_TIMEOUT_SECONDS

    # ------------------------------------------------------------------
    # Core fan-out
    # ------------------------------------------------------------------

    async def dispatch(self, message: ChannelMessage, recipients: List[Dict],
                       channel_names: Iterable[str]) -> DispatchResult:
        calls = {}
        for name in dict.fromkeys(channel_names):
            channel = self.channels.get(name)
            if channel is None:
                calls[name] = _unavailable(name)
            else:
                calls[name] = channel.send(message, recipients)

        result = await settle_all(calls, self.timeout)
        report_id = message.data.get("report_id") or message.data.get("finder_report_id")
        for name in result.failed:
            logger.warning(
                f"Channel {name} failed for {message.event} (report {report_id}): {result[name].detail}"
            )
        logger.info(f"Dispatched {message.event} (report {report_id}): {result.summary()}")
        return result

    # ------------------------------------------------------------------
    # Recipient resolution
    # ------------------------------------------------------------------

    def station_staff(self, station_id: str) -> List[Dict]:
        """Officers and admins whose police_station equals the station id."""
        if not station_id:
            return []
        query = where_filter(self.db.collection(USERS_COLLECTION), "police_station", "==", station_id)
        staff = []
        for doc in query.stream():
            user = snapshot_to_dict(doc)
            roles = user.get("roles") or []
            if any(role in STAFF_ROLES for role in roles):
                staff.append(user)
        return staff

    def load_users(self, user_ids: Sequence[Optional[str]]) -> List[Dict]:
        users = []
        for user_id in dict.fromkeys(uid for uid in user_ids if uid):
            snapshot = self.db.collection(USERS_COLLECTION).document(user_id).get()
            if snapshot.exists:
                users.append(snapshot_to_dict(snapshot))
            else:
                logger.warning(f"Notification recipient {user_id} not found")
        return users

    def resolve_broadcast_audience(self, report: Dict, scope: Optional[BroadcastScope]) -> List[Dict]:
        scope = scope or BroadcastScope()
        users_ref = self.db.collection(USERS_COLLECTION)

        if scope.type == ScopeType.CITY:
            return [snapshot_to_dict(doc) for doc in where_filter(users_ref, "city", "==", scope.city).stream()]

        users = [snapshot_to_dict(doc) for doc in users_ref.stream()]
        if scope.type == ScopeType.ALL:
            return users

        origin = (report.get("location") or {}).get("coordinates")
        if not origin:
            logger.warning(f"Report {report.get('id')} has no coordinates; radius audience is empty")
            return []
        audience = []
        for user in users:
            coords = (user.get("location") or {}).get("coordinates")
            if coords and len(coords) == 2 and distance_km(origin, coords) <= scope.radius_km:
                audience.append(user)
        return audience

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def notify_station(self, event: str, report: Dict, station_id: str, title: str, body: str,
                             template: str = "generic", channels: Sequence[str] = STATION_CHANNELS,
                             data: Optional[Dict] = None) -> DispatchResult:
        staff = self.station_staff(station_id)
        message = ChannelMessage(
            event=event,
            title=title,
            body=body,
            data={**report_data(report), **(data or {})},
            image_url=report_photo_url(report),
            template=template,
            context={"report": report, "person_name": person_name(report)},
            rooms=[station_room(station_id)],
        )
        return await self.dispatch(message, staff, channels)

    async def notify_users(self, event: str, users: List[Dict], title: str, body: str,
                           data: Optional[Dict] = None, template: str = "generic",
                           channels: Sequence[str] = USER_CHANNELS,
                           context: Optional[Dict] = None) -> DispatchResult:
        message = ChannelMessage(
            event=event,
            title=title,
            body=body,
            data=data or {},
            template=template,
            context=context or {},
            rooms=[user_room(user["id"]) for user in users if user.get("id")],
        )
        return await self.dispatch(message, users, channels)

    async def broadcast(self, report: Dict, channels: Sequence[str], audience: List[Dict]) -> DispatchResult:
        message = broadcast_message(report)
        city = ((report.get("location") or {}).get("address") or {}).get("city")
        if city:
            message.rooms.append(city_room(city))
        channel_names = list(channels)
        if audience and "in_app" not in channel_names:
            channel_names.append("in_app")
        return await self.dispatch(message, audience, channel_names)

    async def emit(self, room: str, event: str, data: Dict) -> int:
        """Realtime-only event outside the channel fan-out (e.g. city feed refresh)."""
        return await self.registry.emit(room, event, data)

    def retract_social(self, post_id: Optional[str]) -> bool:
        channel = self.channels.get("facebook")
        if not post_id or channel is None or not hasattr(channel, "retract"):
            return False
        return channel.retract(post_id)


async def _unavailable(name: str) -> ChannelOutcome:
    raise ChannelDispatchFailure(f"channel '{name}' is not available", {"channel": name})


def default_channels(db, registry: ConnectionRegistry) -> Dict[str, NotificationChannel]:
    from agapay.services.channels.email import EmailChannel
    from agapay.services.channels.facebook import FacebookChannel
    from agapay.services.channels.in_app import InAppChannel
    from agapay.services.channels.push import PushChannel
    from agapay.services.channels.realtime import RealtimeChannel

    return {
        "push": PushChannel(),
        "email": EmailChannel(),
        "facebook": FacebookChannel(),
        "in_app": InAppChannel(db=db),
        "realtime": RealtimeChannel(registry),
    }


_dispatcher: Optional[NotificationDispatcher] = None


def init_notification_dispatcher(registry: ConnectionRegistry) -> NotificationDispatcher:
    """Create the process dispatcher bound to the application's connection registry."""
    global _dispatcher
    _dispatcher = NotificationDispatcher(registry=registry)
    return _dispatcher


def get_notification_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher
