import asyncio
import functools
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from agapay.core.errors import ChannelDispatchFailure

logger = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class ChannelOutcome:
    channel: str
    status: OutcomeStatus
    delivered: int = 0
    detail: Optional[str] = None
    external_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    @classmethod
    def success(cls, channel: str, delivered: int = 0, detail: Optional[str] = None,
                external_id: Optional[str] = None) -> "ChannelOutcome":
        return cls(channel, OutcomeStatus.SUCCESS, delivered, detail, external_id)

    @classmethod
    def failure(cls, channel: str, detail: str) -> "ChannelOutcome":
        return cls(channel, OutcomeStatus.FAILURE, 0, detail)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class ChannelMessage:
    """
    One notification event rendered for every channel.

    `template`/`context` drive email, `rooms` drive realtime, `image_url`
    is used by push and social.
    """
    event: str
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)
    image_url: Optional[str] = None
    template: str = "generic"
    context: Dict[str, Any] = field(default_factory=dict)
    rooms: List[str] = field(default_factory=list)


class NotificationChannel(ABC):
    """
    A single delivery channel.

    `send` raises ChannelDispatchFailure (or any exception) on failure,
    which the dispatcher turns into a failure outcome.
    """

    name = "base"
    requires_recipients = True

    @abstractmethod
    async def send(self, message: ChannelMessage, recipients: List[Dict]) -> ChannelOutcome:
        raise NotImplementedError


class BlockingChannel(NotificationChannel):
    """Channel backed by a blocking client; `deliver` runs in the default executor."""

    async def send(self, message: ChannelMessage, recipients: List[Dict]) -> ChannelOutcome:
        if self.requires_recipients and not recipients:
            raise ChannelDispatchFailure("no recipients", {"channel": self.name})
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self.deliver, message, recipients))

    @abstractmethod
    def deliver(self, message: ChannelMessage, recipients: List[Dict]) -> ChannelOutcome:
        raise NotImplementedError
