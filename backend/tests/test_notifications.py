"""
Tests for e-mail rendering, the realtime broker and the notification dispatcher.
"""
import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from services.email_service import EmailProvider, EmailService
from services.notifications import (
    NotificationDispatcher,
    NotificationEvent,
    RealtimeBroker,
    RealtimeEvent,
    outcome_event,
    render_email,
)


class TestRenderEmail:
    def test_outcome_with_comment(self):
        rendered = render_email(NotificationEvent.DOCUMENT_RETURNED, {
            "title": "Transcript", "action": "returned", "comment": "Wrong semester",
        })
        assert rendered["subject"] == "Document Returned - Transcript"
        assert rendered["text"] == 'Your document "Transcript" has been returned. Comment: Wrong semester'
        assert "Comment from approver" in rendered["html"]

    def test_outcome_without_comment(self):
        rendered = render_email(NotificationEvent.DOCUMENT_APPROVED, {"title": "Transcript", "action": "approved"})
        assert rendered["text"] == 'Your document "Transcript" has been approved.'
        assert "Comment from approver" not in rendered["html"]

    def test_html_is_escaped(self):
        rendered = render_email(NotificationEvent.DOCUMENT_SUBMITTED, {
            "title": "<script>alert(1)</script>", "department": "admissions",
        })
        assert "<script>" not in rendered["html"]
        assert "&lt;script&gt;" in rendered["html"]

    def test_outcome_event_mapping(self):
        assert outcome_event("approved") == NotificationEvent.DOCUMENT_APPROVED
        assert outcome_event("forwarded") == NotificationEvent.DOCUMENT_FORWARDED


class TestRealtimeBroker:
    @pytest.mark.asyncio
    async def test_publish_to_room_subscribers(self):
        broker = RealtimeBroker()
        first = broker.subscribe("finance")
        second = broker.subscribe("finance")
        other = broker.subscribe("registrar")

        delivered = await broker.publish("finance", "new-document", {"document_id": "d1"})

        assert delivered == 2
        assert first.get_nowait() == {"event": "new-document", "room": "finance",
                                      "payload": {"document_id": "d1"}}
        assert second.qsize() == 1
        assert other.empty()

    @pytest.mark.asyncio
    async def test_unsubscribe_and_full_queue(self):
        broker = RealtimeBroker(max_queue_size=1)
        queue = broker.subscribe("s1")
        assert await broker.publish("s1", "document-updated", {}) == 1
        assert await broker.publish("s1", "document-updated", {}) == 0

        broker.unsubscribe("s1", queue)
        assert await broker.publish("s1", "document-updated", {}) == 0


class TestDispatcher:
    def make_dispatcher(self, approvers=None, user=None, enabled=True):
        directory = MagicMock()
        directory.find_approvers = AsyncMock(return_value=approvers or [])
        directory.get_user = AsyncMock(return_value=user)
        email_service = EmailService(provider=EmailProvider.MOCK)
        return NotificationDispatcher(email_service, RealtimeBroker(), directory, enabled=enabled)

    @pytest.mark.asyncio
    async def test_fan_out_skips_approvers_without_address(self):
        dispatcher = self.make_dispatcher(approvers=[
            {"id": "a1", "email": "a1@docflow.edu", "is_active": True},
            {"id": "a2", "email": None, "is_active": True},
        ])
        dispatcher.notify_approvers("finance", NotificationEvent.FORWARDED_FOR_APPROVAL,
                                    {"title": "T", "department": "finance"})
        await dispatcher.drain()

        sent = dispatcher.email_service.get_sent_emails()
        assert [e["to"] for e in sent] == [["a1@docflow.edu"]]
        assert sent[0]["from_address"] == "DocFlow <noreply@docflow.edu>"

    @pytest.mark.asyncio
    async def test_user_without_email_is_skipped(self):
        dispatcher = self.make_dispatcher(user={"id": "s1"})
        dispatcher.notify_user("s1", NotificationEvent.DOCUMENT_APPROVED, {"title": "T", "action": "approved"})
        await dispatcher.drain()
        assert dispatcher.email_service.get_sent_emails() == []

    @pytest.mark.asyncio
    async def test_directory_failure_is_swallowed(self):
        dispatcher = self.make_dispatcher()
        dispatcher.directory.find_approvers = AsyncMock(side_effect=RuntimeError("db down"))
        dispatcher.notify_approvers("finance", NotificationEvent.DOCUMENT_SUBMITTED, {"title": "T"})
        await dispatcher.drain()
        assert dispatcher.email_service.get_sent_emails() == []

    @pytest.mark.asyncio
    async def test_caller_is_not_blocked(self):
        dispatcher = self.make_dispatcher()
        release = asyncio.Event()

        async def slow_lookup(department):
            await release.wait()
            return [{"id": "a1", "email": "a1@docflow.edu", "is_active": True}]

        dispatcher.directory.find_approvers = slow_lookup
        dispatcher.notify_approvers("finance", NotificationEvent.DOCUMENT_SUBMITTED, {"title": "T"})
        assert dispatcher.email_service.get_sent_emails() == []

        release.set()
        await dispatcher.drain()
        assert len(dispatcher.email_service.get_sent_emails()) == 1

    @pytest.mark.asyncio
    async def test_disabled_dispatcher_sends_nothing(self):
        dispatcher = self.make_dispatcher(enabled=False)
        room = dispatcher.broker.subscribe("finance")
        dispatcher.notify("a@docflow.edu", NotificationEvent.DOCUMENT_SUBMITTED, {"title": "T"})
        dispatcher.publish("finance", RealtimeEvent.NEW_DOCUMENT, {})
        await dispatcher.drain()
        assert dispatcher.email_service.get_sent_emails() == []
        assert room.empty()

    def test_no_running_loop_drops_notification(self):
        dispatcher = self.make_dispatcher()
        dispatcher.notify("a@docflow.edu", NotificationEvent.DOCUMENT_SUBMITTED, {"title": "T"})
        assert dispatcher.email_service.get_sent_emails() == []


class TestEmailService:
    @pytest.mark.asyncio
    async def test_recipients_are_normalized(self):
        service = EmailService(provider=EmailProvider.MOCK)
        receipt = await service.send_email(
            to=[" Finance@DocFlow.edu", "finance@docflow.edu", ""],
            subject="Document Forwarded for Approval",
            html_body="<p>x</p>",
            event_kind="document-forwarded-for-approval",
            document_id="d1",
        )
        assert receipt.success and receipt.message_id.startswith("mock_")
        sent = service.get_sent_emails()
        assert sent[0]["to"] == ["finance@docflow.edu"]
        assert sent[0]["document_id"] == "d1"

    @pytest.mark.asyncio
    async def test_no_recipients(self):
        service = EmailService(provider=EmailProvider.MOCK)
        receipt = await service.send_email(to=[None, "  "], subject="x", html_body="")
        assert not receipt.success
        assert receipt.error == "no recipients"
        assert service.get_sent_emails() == []

    @pytest.mark.asyncio
    async def test_email_logs_newest_first_by_event(self):
        service = EmailService(provider=EmailProvider.MOCK)
        await service.send_email(["a@docflow.edu"], "one", "", event_kind="document-submitted")
        await service.send_email(["b@docflow.edu"], "two", "", event_kind="document-approved")
        await service.send_email(["c@docflow.edu"], "three", "", event_kind="document-submitted")

        logs = await service.list_email_logs(event_kind="document-submitted")
        assert [l["subject"] for l in logs] == ["three", "one"]

        service.clear_sent_emails()
        assert await service.list_email_logs() == []

    @pytest.mark.asyncio
    async def test_email_logs_written_to_database(self):
        db = MagicMock()
        db.email_logs.insert_one = AsyncMock()
        service = EmailService(db=db, provider=EmailProvider.MOCK)
        await service.send_email(["a@docflow.edu"], "one", "")
        db.email_logs.insert_one.assert_awaited_once()

    def test_unconfigured_provider(self):
        service = EmailService(provider=EmailProvider.SMTP_RELAY)
        with pytest.raises(NotImplementedError):
            service.get_sent_emails()
