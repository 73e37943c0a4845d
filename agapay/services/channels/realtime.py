"""
Realtime channel - emits events to rooms of the connection registry.
"""

import logging
from typing import Dict, List

from agapay.core.errors import ChannelDispatchFailure
from agapay.services.connection_registry import ConnectionRegistry
from .base import ChannelMessage, ChannelOutcome, NotificationChannel

logger = logging.getLogger(__name__)


class RealtimeChannel(NotificationChannel):
    """Room-addressed; nobody listening is still a success."""

    name = "realtime"
    requires_recipients = False

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def send(self, message: ChannelMessage, recipients: List[Dict]) -> ChannelOutcome:
        if not message.rooms:
            raise ChannelDispatchFailure("no rooms", {"channel": self.name})
        payload = {"title": message.title, "message": message.body, **message.data}
        delivered = 0
        for room in message.rooms:
            delivered += await self.registry.emit(room, message.event, payload)
        return ChannelOutcome.success(self.name, delivered)
