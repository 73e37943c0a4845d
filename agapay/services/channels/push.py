"""
Push channel - Firebase Cloud Messaging multicast to device tokens.
"""

import logging
from typing import Dict, List, Optional

from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from agapay.core.errors import ChannelDispatchFailure
from agapay.core.settings import settings
from .base import BlockingChannel, ChannelMessage, ChannelOutcome

logger = logging.getLogger(__name__)

# FCM limit per multicast request
MULTICAST_BATCH_SIZE = 500


def collect_device_tokens(recipients: List[Dict]) -> List[str]:
    tokens = []
    for user in recipients:
        for token in user.get("device_tokens") or []:
            if token and token not in tokens:
                tokens.append(token)
    return tokens


class PushChannel(BlockingChannel):
    name = "push"

    def __init__(self, sound: Optional[str] = None, ttl_seconds: Optional[int] = None):
        self.sound = sound or settings.PUSH_SOUND
        self.ttl_seconds = ttl_seconds or settings.PUSH_TTL_SECONDS

    def _build(self, message: ChannelMessage, tokens: List[str]) -> messaging.MulticastMessage:
        data = {key: str(value) for key, value in message.data.items() if value is not None}
        data["event"] = message.event
        return messaging.MulticastMessage(
            tokens=tokens,
            notification=messaging.Notification(
                title=message.title,
                body=message.body,
                image=message.image_url,
            ),
            data=data,
            android=messaging.AndroidConfig(
                ttl=self.ttl_seconds,
                priority="high",
                notification=messaging.AndroidNotification(sound=self.sound),
            ),
            apns=messaging.APNSConfig(
                payload=messaging.APNSPayload(aps=messaging.Aps(sound=f"{self.sound}.wav")),
            ),
        )

    def deliver(self, message: ChannelMessage, recipients: List[Dict]) -> ChannelOutcome:
        tokens = collect_device_tokens(recipients)
        if not tokens:
            raise ChannelDispatchFailure("no device tokens", {"channel": self.name})

        delivered = 0
        failed = 0
        for start in range(0, len(tokens), MULTICAST_BATCH_SIZE):
            batch = tokens[start:start + MULTICAST_BATCH_SIZE]
            try:
                response = messaging.send_each_for_multicast(self._build(message, batch))
            except firebase_exceptions.FirebaseError as e:
                logger.warning(f"FCM multicast failed for {len(batch)} tokens: {e}")
                failed += len(batch)
                continue
            delivered += response.success_count
            failed += response.failure_count

        if delivered == 0:
            raise ChannelDispatchFailure(f"push delivery failed for all {len(tokens)} tokens", {"channel": self.name})
        logger.info(f"Push '{message.event}' delivered to {delivered}/{len(tokens)} devices")
        return ChannelOutcome.success(self.name, delivered, detail=f"{failed} failed" if failed else None)
