"""
Facebook channel - posts to the configured Page through the Graph API.
"""

import logging
from typing import Dict, List, Optional

import requests

from agapay.core.errors import ChannelDispatchFailure
from agapay.core.settings import settings
from .base import BlockingChannel, ChannelMessage, ChannelOutcome

logger = logging.getLogger(__name__)


class FacebookChannel(BlockingChannel):
    """
    A page post has no per-user recipients. Posts with an image go to
    /{page}/photos, text-only posts to /{page}/feed.
    """

    name = "facebook"
    requires_recipients = False

    def __init__(self, page_id: Optional[str] = None, access_token: Optional[str] = None,
                 graph_url: Optional[str] = None, timeout: Optional[float] = None):
        self.page_id = page_id or settings.FACEBOOK_PAGE_ID
        self.access_token = access_token or settings.FACEBOOK_PAGE_ACCESS_TOKEN
        self.graph_url = (graph_url or settings.FACEBOOK_GRAPH_API_URL).rstrip("/")
        self.timeout = timeout or settings.CHANNEL_TIMEOUT_SECONDS

    @property
    def configured(self) -> bool:
        return bool(self.page_id and self.access_token)

    def post(self, text: str, image_url: Optional[str] = None) -> str:
        """Publish a page post and return its id."""
        if not self.configured:
            raise ChannelDispatchFailure("Facebook page is not configured", {"channel": self.name})

        if image_url:
            endpoint = f"{self.graph_url}/{self.page_id}/photos"
            payload = {"url": image_url, "caption": text, "access_token": self.access_token}
        else:
            endpoint = f"{self.graph_url}/{self.page_id}/feed"
            payload = {"message": text, "access_token": self.access_token}

        try:
            resp = requests.post(endpoint, data=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise ChannelDispatchFailure(f"Graph API request failed: {e}", {"channel": self.name})

        if resp.status_code != 200:
            raise ChannelDispatchFailure(
                f"Graph API returned {resp.status_code}",
                {"channel": self.name, "response": resp.text[:500]},
            )
        body = resp.json()
        post_id = body.get("post_id") or body.get("id")
        if not post_id:
            raise ChannelDispatchFailure("Graph API response had no post id", {"channel": self.name})
        return post_id

    def retract(self, post_id: str) -> bool:
        """Delete a previously published post. Best-effort, never raises."""
        if not post_id or not self.configured:
            return False
        try:
            resp = requests.delete(
                f"{self.graph_url}/{post_id}",
                params={"access_token": self.access_token},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"Failed to retract Facebook post {post_id}: {e}")
            return False
        if resp.status_code != 200:
            logger.warning(f"Facebook retract of {post_id} returned {resp.status_code}")
            return False
        logger.info(f"Retracted Facebook post {post_id}")
        return True

    def deliver(self, message: ChannelMessage, recipients: List[Dict]) -> ChannelOutcome:
        text = f"{message.title}\n\n{message.body}"
        post_id = self.post(text, message.image_url)
        logger.info(f"Facebook post {post_id} published for '{message.event}'")
        return ChannelOutcome.success(self.name, delivered=1, external_id=post_id)
