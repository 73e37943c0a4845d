"""
Firestore query and write helpers shared by the services.

NOTE: For firebase_admin SDK, we use positional arguments for where() which
still work. The deprecation warning is just a warning.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from google.api_core import exceptions as gexc

from agapay.core.errors import InvalidTransition, NotFoundError, StorageFailure

logger = logging.getLogger(__name__)


def where_filter(query, field_path: str, op_string: str, value):
    """
    Helper function for Firestore queries.

    Usage:
        query = where_filter(collection, "status", "==", "Pending")
        query = where_filter(query, "location.address.city", "==", "Manila")
    """
    return query.where(field_path, op_string, value)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value) -> Optional[datetime]:
    """Normalize Firestore timestamps, ISO strings and naive datetimes to aware UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Unparseable timestamp: {value!r}")
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def snapshot_to_dict(snapshot) -> Dict[str, Any]:
    data = snapshot.to_dict() or {}
    data["id"] = snapshot.id
    return data


def get_document(db, collection: str, doc_id: str, label: Optional[str] = None):
    """Fetch a snapshot or raise NotFoundError."""
    if not doc_id:
        raise NotFoundError(f"{label or collection} not found")
    snapshot = db.collection(collection).document(doc_id).get()
    if not snapshot.exists:
        raise NotFoundError(f"{label or collection} {doc_id} not found", {"id": doc_id})
    return snapshot


def conditional_update(db, snapshot, updates: Dict[str, Any]) -> None:
    """
    Apply `updates` only if the document has not changed since `snapshot` was read.

    Uses a last-update-time precondition so a guard checked against the
    snapshot (e.g. "status is Pending") and the write form one atomic
    compare-and-set at the storage layer. A concurrent writer makes this
    raise InvalidTransition.
    """
    option = db.write_option(last_update_time=snapshot.update_time)
    try:
        snapshot.reference.update(updates, option=option)
    except (gexc.FailedPrecondition, gexc.Aborted) as e:
        logger.warning(f"Concurrent modification of {snapshot.reference.id}: {e}")
        raise InvalidTransition(
            "Report was modified concurrently; reload and retry",
            {"id": snapshot.reference.id},
        )
    except gexc.NotFound:
        raise NotFoundError(f"Document {snapshot.reference.id} no longer exists")
    except gexc.GoogleAPICallError as e:
        logger.error(f"Firestore update failed for {snapshot.reference.id}: {e}", exc_info=True)
        raise StorageFailure("Failed to persist changes")


def update_with_retry(db, doc_ref, build_updates: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]],
                      attempts: int = 3) -> Dict[str, Any]:
    """
    Read-modify-write for appends that must not lose concurrent entries.

    `build_updates` receives the current document (with "id") and returns the
    fields to write, or None to skip. Each attempt is guarded by the
    snapshot's update time; a conflict re-reads and rebuilds. Returns the
    merged document.
    """
    for attempt in range(1, attempts + 1):
        snapshot = doc_ref.get()
        if not snapshot.exists:
            raise NotFoundError(f"Document {doc_ref.id} not found", {"id": doc_ref.id})
        current = snapshot_to_dict(snapshot)
        updates = build_updates(current)
        if not updates:
            return current
        try:
            conditional_update(db, snapshot, updates)
            current.update(updates)
            return current
        except InvalidTransition:
            if attempt == attempts:
                raise
            logger.info(f"Retrying update of {doc_ref.id} after conflict (attempt {attempt})")
    raise InvalidTransition("Update was not attempted", {"id": doc_ref.id})


def write_document(doc_ref, data: Dict[str, Any]) -> None:
    """Create/overwrite a document, mapping client errors to StorageFailure."""
    try:
        doc_ref.set(data)
    except gexc.GoogleAPICallError as e:
        logger.error(f"Firestore write failed for {doc_ref.id}: {e}", exc_info=True)
        raise StorageFailure("Failed to persist document")


def paginate(items, page: int, limit: int) -> Dict[str, Any]:
    page = max(1, page)
    limit = max(1, limit)
    start = (page - 1) * limit
    total = len(items)
    return {
        "items": items[start:start + limit],
        "current_page": page,
        "total_pages": (total + limit - 1) // limit,
        "total": total,
        "has_more": page * limit < total,
    }
