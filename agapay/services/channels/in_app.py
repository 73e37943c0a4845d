"""
In-app channel - writes one `notifications` document per recipient.
"""

import logging
from typing import Dict, List

from google.api_core import exceptions as gexc

from agapay.config.firebase import get_db
from agapay.core.errors import ChannelDispatchFailure
from agapay.utils.firestore_helpers import utcnow
from .base import BlockingChannel, ChannelMessage, ChannelOutcome

logger = logging.getLogger(__name__)

NOTIFICATIONS_COLLECTION = "notifications"

# Firestore batch limit
BATCH_SIZE = 500


class InAppChannel(BlockingChannel):
    name = "in_app"

    def __init__(self, db=None):
        self.db = db or get_db()

    def deliver(self, message: ChannelMessage, recipients: List[Dict]) -> ChannelOutcome:
        recipient_ids = []
        for user in recipients:
            if user.get("id") and user["id"] not in recipient_ids:
                recipient_ids.append(user["id"])
        if not recipient_ids:
            raise ChannelDispatchFailure("no recipients", {"channel": self.name})

        now = utcnow()
        collection = self.db.collection(NOTIFICATIONS_COLLECTION)
        try:
            for start in range(0, len(recipient_ids), BATCH_SIZE):
                batch = self.db.batch()
                for recipient_id in recipient_ids[start:start + BATCH_SIZE]:
                    batch.set(collection.document(), {
                        "recipient": recipient_id,
                        "type": message.event,
                        "title": message.title,
                        "message": message.body,
                        "data": message.data,
                        "is_read": False,
                        "created_at": now,
                    })
                batch.commit()
        except gexc.GoogleAPICallError as e:
            raise ChannelDispatchFailure(f"failed to store notifications: {e}", {"channel": self.name})

        logger.info(f"In-app '{message.event}' stored for {len(recipient_ids)} users")
        return ChannelOutcome.success(self.name, len(recipient_ids))
