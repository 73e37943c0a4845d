"""
In-app notification inbox. Documents are written by the in_app channel;
this service only reads them and tracks read state.
"""

import logging
from typing import Dict, Optional

from agapay.config.firebase import get_db
from agapay.core.errors import NotFoundError
from agapay.models.user import Principal
from agapay.utils.firestore_helpers import paginate, snapshot_to_dict, utcnow, where_filter

logger = logging.getLogger(__name__)

NOTIFICATIONS_COLLECTION = "notifications"


class NotificationService:
    def __init__(self, db=None):
        self.db = db or get_db()

    def _for_user(self, user_id: str):
        return where_filter(self.db.collection(NOTIFICATIONS_COLLECTION), "recipient", "==", user_id)

    def list_for_user(self, principal: Principal, is_read: Optional[bool] = None,
                      page: int = 1, limit: int = 20) -> Dict:
        query = self._for_user(principal.id)
        if is_read is not None:
            query = where_filter(query, "is_read", "==", is_read)
        notifications = [snapshot_to_dict(doc) for doc in query.stream()]
        notifications.sort(key=lambda n: (n.get("created_at") is not None, n.get("created_at")), reverse=True)
        unread = sum(1 for doc in self._for_user(principal.id).stream() if not doc.to_dict().get("is_read"))
        result = paginate(notifications, page, limit)
        return {"notifications": result.pop("items"), "unread_count": unread, **result}

    def mark_as_read(self, notification_id: str, principal: Principal) -> Dict:
        doc_ref = self.db.collection(NOTIFICATIONS_COLLECTION).document(notification_id)
        snapshot = doc_ref.get()
        # Other users' notifications look missing
        if not snapshot.exists or snapshot.to_dict().get("recipient") != principal.id:
            raise NotFoundError("Notification not found", {"id": notification_id})
        updates = {"is_read": True, "read_at": utcnow()}
        doc_ref.update(updates)
        notification = snapshot_to_dict(snapshot)
        notification.update(updates)
        return notification

    def mark_all_as_read(self, principal: Principal) -> int:
        query = where_filter(self._for_user(principal.id), "is_read", "==", False)
        batch = self.db.batch()
        now = utcnow()
        count = 0
        for doc in query.stream():
            batch.update(doc.reference, {"is_read": True, "read_at": now})
            count += 1
            # Firestore caps a batch at 500 writes
            if count % 500 == 0:
                batch.commit()
                batch = self.db.batch()
        if count % 500:
            batch.commit()
        logger.info(f"Marked {count} notifications read for {principal.id}")
        return count


_notification_service: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService()
    return _notification_service
