"""
Notification channels.

Each channel delivers one ChannelMessage to a list of user documents and
returns a ChannelOutcome, or raises; the dispatcher isolates failures.
"""

from agapay.services.channels.base import (
    BlockingChannel,
    ChannelMessage,
    ChannelOutcome,
    NotificationChannel,
    OutcomeStatus,
)

__all__ = ["BlockingChannel", "ChannelMessage", "ChannelOutcome", "NotificationChannel", "OutcomeStatus"]
