"""
Tests for the notification fan-out, channels and the in-app inbox.
"""

import asyncio

import pytest

from agapay.core.errors import ChannelDispatchFailure, NotFoundError
from agapay.models.user import Principal
from agapay.routes.realtime import may_join, normalize_room
from agapay.services.channels.base import BlockingChannel, ChannelMessage, ChannelOutcome, NotificationChannel
from agapay.services.channels.email import collect_addresses, render_email
from agapay.services.channels.in_app import InAppChannel
from agapay.services.channels.realtime import RealtimeChannel
from agapay.services.connection_registry import ConnectionRegistry, city_room
from agapay.services.notification_dispatcher import NotificationDispatcher, broadcast_message, settle_all
from agapay.services.notification_service import NotificationService
from conftest import FailingChannel, make_report


class FakeWebSocket:
    def __init__(self, broken: bool = False):
        self.broken = broken
        self.messages = []

    async def send_json(self, data):
        if self.broken:
            raise RuntimeError("socket closed")
        self.messages.append(data)


class SlowChannel:
    name = "slow"
    requires_recipients = False

    async def send(self, message, recipients):
        await asyncio.sleep(5)
        return ChannelOutcome.success(self.name)


def message(**overrides) -> ChannelMessage:
    data = {"event": "STATUS_UPDATED", "title": "Update", "body": "Report is now Assigned",
            "data": {"report_id": "report-1"}}
    data.update(overrides)
    return ChannelMessage(**data)


# ============================================================================
# DISPATCH ISOLATION
# ============================================================================

class TestSettleAll:
    async def test_failures_are_isolated(self, channels):
        failing = FailingChannel("email")
        result = await settle_all({
            "push": channels["push"].send(message(), [{"id": "u1"}]),
            "email": failing.send(message(), [{"id": "u1"}]),
        }, timeout=1.0)

        assert result.summary() == {"push": "success", "email": "failure"}
        assert result["email"].detail == "SMTP error: connection refused"
        assert result.failed == ["email"]

    async def test_timeout_becomes_failure(self, channels):
        result = await settle_all({
            "slow": SlowChannel().send(message(), []),
            "push": channels["push"].send(message(), [{"id": "u1"}]),
        }, timeout=0.05)

        assert result["slow"].status.value == "failure"
        assert "timed out" in result["slow"].detail
        assert result["push"].ok

    async def test_unknown_channel_fails_alone(self, db, channels):
        dispatcher = NotificationDispatcher(db=db, channels=channels, registry=ConnectionRegistry(), timeout=1.0)
        result = await dispatcher.dispatch(message(), [{"id": "u1"}], ["push", "sms"])
        assert result.summary() == {"push": "success", "sms": "failure"}

    async def test_empty_recipients_is_failure(self, dispatcher):
        result = await dispatcher.notify_users("STATUS_UPDATED", [], "t", "b", channels=("push",))
        assert result.summary() == {"push": "failure"}


class TestBroadcastMessage:
    def test_alert_text(self, db):
        report = make_report(db, case_id="MIS-abc1234")
        msg = broadcast_message(report)
        assert msg.title == "MISSING ALERT: Juan Dela Cruz"
        assert "Case ID: MIS-abc1234" in msg.body
        assert "Last seen: 2025-01-10 14:30" in msg.body
        assert msg.image_url == "https://storage.test/p.jpg"


# ============================================================================
# CHANNELS
# ============================================================================

class TestInAppChannel:
    async def test_one_document_per_recipient(self, db):
        channel = InAppChannel(db=db)
        outcome = await channel.send(message(), [{"id": "u1"}, {"id": "u2"}, {"id": "u1"}, {"email": "x@y.z"}])

        assert outcome.delivered == 2
        stored = db.all("notifications")
        assert sorted(n["recipient"] for n in stored) == ["u1", "u2"]
        assert all(n["is_read"] is False for n in stored)

    async def test_no_recipients(self, db):
        with pytest.raises(ChannelDispatchFailure):
            await InAppChannel(db=db).send(message(), [])


class TestRealtimeChannel:
    async def test_emits_to_rooms(self):
        registry = ConnectionRegistry()
        listener = FakeWebSocket()
        await registry.connect(listener, ["station:station-near"])

        outcome = await RealtimeChannel(registry).send(message(rooms=["station:station-near"]), [])

        assert outcome.delivered == 1
        assert listener.messages[0]["event"] == "STATUS_UPDATED"
        assert listener.messages[0]["data"]["report_id"] == "report-1"

    async def test_nobody_listening_is_success(self):
        outcome = await RealtimeChannel(ConnectionRegistry()).send(message(rooms=["user:nobody"]), [])
        assert outcome.ok
        assert outcome.delivered == 0

    async def test_dead_connections_are_dropped(self):
        registry = ConnectionRegistry()
        await registry.connect(FakeWebSocket(broken=True), [city_room("City Y")])
        assert registry.connection_count() == 1

        delivered = await registry.emit(city_room("City Y"), "BROADCAST", {})

        assert delivered == 0
        assert registry.connection_count() == 0


    def test_async_only_without_blocking_delivery(self, db):
        channel = RealtimeChannel(ConnectionRegistry())
        assert isinstance(channel, NotificationChannel)
        assert not isinstance(channel, BlockingChannel)
        assert not hasattr(channel, "deliver")
        assert isinstance(InAppChannel(db=db), BlockingChannel)


class TestRealtimeRooms:
    def test_city_rooms_are_normalized(self):
        assert normalize_room("city:Manila") == city_room("manila")
        assert normalize_room("city: Manila ") == "city:manila"
        assert normalize_room("city:") == ""
        assert normalize_room("user:reporter-1") == "user:reporter-1"

    def test_join_rules(self, reporter):
        assert may_join(reporter, normalize_room("city:Quezon City"))
        assert may_join(reporter, "user:reporter-1")
        assert not may_join(reporter, "user:someone-else")
        assert not may_join(reporter, "station:station-near")

    async def test_joined_city_room_receives_city_events(self):
        registry = ConnectionRegistry()
        listener = FakeWebSocket()
        await registry.connect(listener)
        await registry.join(listener, normalize_room("city:Manila"))

        delivered = await registry.emit(city_room("Manila"), "BROADCAST", {"report_id": "report-1"})

        assert delivered == 1
        assert listener.messages[0]["data"]["report_id"] == "report-1"


class TestEmailRendering:
    def test_opted_out_and_duplicate_addresses(self):
        recipients = [
            {"email": "a@example.com"},
            {"email": "a@example.com"},
            {"email": "b@example.com", "email_notifications": False},
            {"id": "no-email"},
        ]
        assert collect_addresses(recipients) == ["a@example.com"]

    def test_templates_render(self, db):
        report = make_report(db)
        html = render_email("status_updated", {"title": "Report status updated", "body": "Now Resolved",
                                               "report": report, "person_name": "Juan Dela Cruz"})
        assert "Report status updated" in html

    def test_unknown_template_falls_back_to_generic(self):
        html = render_email("does_not_exist", {"title": "Hello", "body": "World"})
        assert "World" in html


# ============================================================================
# INBOX
# ============================================================================

class TestNotificationService:
    @pytest.fixture
    def inbox(self, db):
        for i, read in enumerate([False, False, True]):
            db.add("notifications", f"n-{i}", {"recipient": "reporter-1", "type": "STATUS_UPDATED",
                                               "title": f"t{i}", "is_read": read, "created_at": None})
        db.add("notifications", "other", {"recipient": "someone-else", "type": "STATUS_UPDATED",
                                          "title": "x", "is_read": False})
        return NotificationService(db=db)

    def test_list_counts_unread(self, inbox, reporter):
        result = inbox.list_for_user(reporter)
        assert result["total"] == 3
        assert result["unread_count"] == 2

        unread = inbox.list_for_user(reporter, is_read=False)
        assert {n["id"] for n in unread["notifications"]} == {"n-0", "n-1"}

    def test_mark_as_read(self, inbox, db, reporter):
        inbox.mark_as_read("n-0", reporter)
        assert db.read("notifications", "n-0")["is_read"] is True

    def test_cannot_touch_other_users_notification(self, inbox, db, reporter):
        with pytest.raises(NotFoundError):
            inbox.mark_as_read("other", reporter)
        assert db.read("notifications", "other")["is_read"] is False

    def test_mark_all_as_read(self, inbox, db, reporter):
        assert inbox.mark_all_as_read(reporter) == 2
        assert inbox.list_for_user(reporter)["unread_count"] == 0
        assert db.read("notifications", "other")["is_read"] is False

    def test_empty_inbox(self, db):
        assert NotificationService(db=db).mark_all_as_read(Principal(id="nobody")) == 0
