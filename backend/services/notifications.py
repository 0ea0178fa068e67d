"""
DocFlow Hub - Notification Dispatch

Fire-and-forget side effects of workflow transitions:
- e-mail to approvers and students (via EmailService)
- realtime events to student and department rooms (via RealtimeBroker)

Every send runs as a background task scheduled after the document write has
committed. Failures are logged here and never reach the caller, so a
delivery problem can not turn a successful transition into an error.
"""

import asyncio
import html
import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Dict, Set

from services.directory import UserDirectory
from services.email_service import EmailService

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    """E-mail notification kinds."""
    DOCUMENT_SUBMITTED = "document-submitted"
    DOCUMENT_APPROVED = "document-approved"
    DOCUMENT_REJECTED = "document-rejected"
    DOCUMENT_RETURNED = "document-returned"
    DOCUMENT_FORWARDED = "document-forwarded"
    FORWARDED_FOR_APPROVAL = "document-forwarded-for-approval"


class RealtimeEvent(str, Enum):
    NEW_DOCUMENT = "new-document"
    DOCUMENT_UPDATED = "document-updated"
    DOCUMENT_ASSIGNED = "document-assigned"


def outcome_event(history_action: str) -> NotificationEvent:
    """E-mail kind sent to the student after an approver action."""
    return NotificationEvent(f"document-{history_action}")


# =============================================================================
# E-MAIL TEMPLATES
# =============================================================================

_OUTCOME_SUBJECT = "Document {Action} - {title}"
_OUTCOME_HTML = """
<h2>Document {Action}</h2>
<p>Your document <strong>"{title}"</strong> has been <strong>{action}</strong>.</p>
{comment_html}
<p>Login to DocFlow to view details and track progress.</p>
"""

EMAIL_TEMPLATES: Dict[NotificationEvent, Dict[str, str]] = {
    NotificationEvent.DOCUMENT_SUBMITTED: {
        "subject": "New Document Pending Approval",
        "text": 'A new document "{title}" has been submitted and requires your approval in {department} department.',
        "html": """
<h2>New Document Pending Approval</h2>
<p>A new document <strong>"{title}"</strong> has been submitted and requires your approval.</p>
<p><strong>Department:</strong> {department}</p>
<p>Please log in to DocFlow to review this document.</p>
""",
    },
    NotificationEvent.FORWARDED_FOR_APPROVAL: {
        "subject": "Document Forwarded for Approval",
        "text": 'Document "{title}" has been forwarded to your department ({department}) for approval.',
        "html": """
<h2>Document Forwarded for Approval</h2>
<p>Document <strong>"{title}"</strong> has been forwarded to your department.</p>
<p><strong>Department:</strong> {department}</p>
<p><strong>Current Status:</strong> Pending approval</p>
<p>Please log in to DocFlow to review this document.</p>
""",
    },
}

for _event in (
    NotificationEvent.DOCUMENT_APPROVED,
    NotificationEvent.DOCUMENT_REJECTED,
    NotificationEvent.DOCUMENT_RETURNED,
    NotificationEvent.DOCUMENT_FORWARDED,
):
    EMAIL_TEMPLATES[_event] = {
        "subject": _OUTCOME_SUBJECT,
        "text": 'Your document "{title}" has been {action}. {comment_text}',
        "html": _OUTCOME_HTML,
    }


def render_email(event_kind: NotificationEvent, payload: Dict[str, Any]) -> Dict[str, str]:
    template = EMAIL_TEMPLATES[event_kind]
    action = payload.get("action", "")
    comment = payload.get("comment") or ""
    values = {
        "title": payload.get("title", ""),
        "department": payload.get("department", ""),
        "action": action,
        "Action": action.capitalize(),
        "comment_text": f"Comment: {comment}" if comment else "",
    }
    escaped = {k: html.escape(str(v)) for k, v in values.items()}
    escaped["comment_html"] = (
        f"<p><strong>Comment from approver:</strong> {html.escape(comment)}</p>" if comment else ""
    )
    return {
        "subject": template["subject"].format(**values),
        "text": template["text"].format(**values).strip(),
        "html": template["html"].format(**escaped),
    }


# =============================================================================
# REALTIME BROKER
# =============================================================================

class RealtimeBroker:
    """
    In-process pub/sub keyed by room (student id or department code).
    The host transport (websocket, SSE, ...) subscribes per connected client.
    """

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._rooms: Dict[str, Set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, room: str) -> asyncio.Queue:
        queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._rooms[room].add(queue)
        return queue

    def unsubscribe(self, room: str, queue: asyncio.Queue):
        self._rooms.get(room, set()).discard(queue)

    async def publish(self, room: str, event_kind: str, payload: Dict[str, Any]) -> int:
        message = {"event": event_kind, "room": room, "payload": payload}
        delivered = 0
        for queue in list(self._rooms.get(room, ())):
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Realtime queue full for room %s, dropping %s", room, event_kind)
        logger.debug("Realtime %s -> room %s (%d subscriber(s))", event_kind, room, delivered)
        return delivered


# =============================================================================
# DISPATCHER
# =============================================================================

class NotificationDispatcher:
    """Schedules notification side effects without ever awaiting them in the caller."""

    def __init__(
        self,
        email_service: EmailService,
        broker: RealtimeBroker,
        directory: UserDirectory,
        enabled: bool = True,
    ):
        self.email_service = email_service
        self.broker = broker
        self.directory = directory
        self.enabled = enabled
        self._tasks: Set[asyncio.Task] = set()

    def notify(self, recipient: str, event_kind: NotificationEvent, payload: Dict[str, Any]):
        """Queue an e-mail to one recipient address."""
        if recipient:
            self._schedule(self._send_email(recipient, event_kind, payload))

    def notify_approvers(self, department: str, event_kind: NotificationEvent, payload: Dict[str, Any]):
        """Queue an e-mail to every active approver of a department (looked up in the task)."""
        if department:
            self._schedule(self._fan_out(department, event_kind, payload))

    def notify_user(self, user_id: str, event_kind: NotificationEvent, payload: Dict[str, Any]):
        """Queue an e-mail to a user's directory address (looked up in the task)."""
        if user_id:
            self._schedule(self._send_to_user(user_id, event_kind, payload))

    def publish(self, room: str, event_kind: RealtimeEvent, payload: Dict[str, Any]):
        """Queue a realtime event for a room."""
        if room:
            self._schedule(self._publish(room, event_kind, payload))

    async def drain(self):
        """Wait for every scheduled notification (shutdown, tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _schedule(self, coro):
        if not self.enabled:
            coro.close()
            return
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            logger.warning("No running event loop, notification dropped")
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send_email(self, recipient: str, event_kind: NotificationEvent, payload: Dict[str, Any]):
        try:
            rendered = render_email(event_kind, payload)
            result = await self.email_service.send_email(
                to=[recipient],
                subject=rendered["subject"],
                html_body=rendered["html"],
                text_body=rendered["text"],
                event_kind=event_kind.value,
                document_id=payload.get("document_id"),
            )
            if not result.success:
                logger.warning("E-mail %s to %s not delivered: %s", event_kind.value, recipient, result.error)
        except Exception:
            logger.exception("E-mail %s to %s failed", event_kind.value, recipient)

    async def _fan_out(self, department: str, event_kind: NotificationEvent, payload: Dict[str, Any]):
        try:
            approvers = await self.directory.find_approvers(department)
        except Exception:
            logger.exception("Approver lookup for %s failed, %s not sent", department, event_kind.value)
            return
        for approver in approvers:
            if approver.get("email"):
                await self._send_email(approver["email"], event_kind, payload)

    async def _send_to_user(self, user_id: str, event_kind: NotificationEvent, payload: Dict[str, Any]):
        try:
            user = await self.directory.get_user(user_id)
        except Exception:
            logger.exception("User lookup for %s failed, %s not sent", user_id, event_kind.value)
            return
        if not user or not user.get("email"):
            logger.info("No e-mail address for user %s, %s not sent", user_id, event_kind.value)
            return
        await self._send_email(user["email"], event_kind, payload)

    async def _publish(self, room: str, event_kind: RealtimeEvent, payload: Dict[str, Any]):
        try:
            await self.broker.publish(room, event_kind.value, payload)
        except Exception:
            logger.exception("Realtime %s to room %s failed", event_kind.value, room)
