"""
DocFlow Hub - Email Service

Outbound e-mail for workflow notifications. Real delivery is owned by the
campus mail relay; this module normalizes recipients, stamps each message
with the workflow event that caused it, and hands it to a provider.

Providers:
- mock: logs every message and keeps it in an in-memory outbox (and in the
  'email_logs' collection when a database is wired). Default.
- smtp_relay: reserved for the campus relay, not configured in this service.
"""

import os
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class EmailProvider(str, Enum):
    MOCK = "mock"
    SMTP_RELAY = "smtp_relay"


EMAIL_PROVIDER = EmailProvider(os.environ.get("EMAIL_PROVIDER", "mock").lower())
DEFAULT_FROM_ADDRESS = os.environ.get("EMAIL_FROM_ADDRESS", "DocFlow <noreply@docflow.edu>")


@dataclass
class OutboundEmail:
    to: List[str]
    subject: str
    html_body: str
    text_body: Optional[str] = None
    from_address: str = DEFAULT_FROM_ADDRESS
    event_kind: Optional[str] = None
    document_id: Optional[str] = None


@dataclass
class DeliveryReceipt:
    """What the provider reported back for one message."""
    success: bool
    message_id: Optional[str] = None
    provider: str = EmailProvider.MOCK.value
    error: Optional[str] = None
    sent_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


def normalize_recipients(addresses: Iterable[Optional[str]]) -> List[str]:
    """Trimmed, lower-cased, de-duplicated addresses in their original order."""
    seen = []
    for address in addresses or []:
        address = (address or "").strip().lower()
        if address and address not in seen:
            seen.append(address)
    return seen


# =============================================================================
# MOCK PROVIDER
# =============================================================================

class MockEmailProvider:
    def __init__(self, db=None):
        self.db = db
        self.outbox: List[Dict[str, Any]] = []

    async def deliver(self, email: OutboundEmail) -> DeliveryReceipt:
        receipt = DeliveryReceipt(success=True, message_id=f"mock_{uuid.uuid4().hex[:12]}")
        record = {
            "message_id": receipt.message_id,
            "provider": receipt.provider,
            "to": email.to,
            "subject": email.subject,
            "from_address": email.from_address,
            "html_body": email.html_body,
            "text_body": email.text_body,
            "event_kind": email.event_kind,
            "document_id": email.document_id,
            "sent_at": receipt.sent_at,
        }
        logger.info("[MOCK EMAIL] %s to %s | %s | %s",
                    email.event_kind or "message", ", ".join(email.to), email.subject, receipt.message_id)
        self.outbox.append(record)

        if self.db is not None:
            try:
                await self.db.email_logs.insert_one(dict(record))
            except Exception as e:
                logger.warning("Could not write email_logs record %s: %s", receipt.message_id, e)
        return receipt


# =============================================================================
# SERVICE
# =============================================================================

class EmailService:
    """
    Usage:
        service = EmailService(db=database)
        receipt = await service.send_email(
            to=["finance@docflow.edu"],
            subject="Document Forwarded for Approval",
            html_body="<h2>...</h2>",
            event_kind="document-forwarded-for-approval",
        )
    """

    def __init__(self, db=None, provider: Optional[EmailProvider] = None):
        self.db = db
        self.provider_type = provider or EMAIL_PROVIDER
        self._provider = None

    @property
    def provider(self) -> MockEmailProvider:
        if self._provider is None:
            if self.provider_type != EmailProvider.MOCK:
                raise NotImplementedError(f"E-mail provider '{self.provider_type.value}' is not configured")
            self._provider = MockEmailProvider(db=self.db)
        return self._provider

    async def send_email(
        self,
        to: List[str],
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
        from_address: Optional[str] = None,
        event_kind: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> DeliveryReceipt:
        recipients = normalize_recipients(to)
        if not recipients:
            logger.warning("E-mail '%s' has no usable recipients, skipped", subject)
            return DeliveryReceipt(success=False, provider=self.provider_type.value, error="no recipients")

        return await self.provider.deliver(OutboundEmail(
            to=recipients,
            subject=subject,
            html_body=html_body,
            text_body=text_body,
            from_address=from_address or DEFAULT_FROM_ADDRESS,
            event_kind=event_kind,
            document_id=document_id,
        ))

    def get_sent_emails(self) -> List[Dict[str, Any]]:
        return list(self.provider.outbox)

    def clear_sent_emails(self):
        self.provider.outbox.clear()

    async def list_email_logs(self, event_kind: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent messages first, from email_logs or the in-memory outbox."""
        if self.db is None:
            records = [r for r in self.provider.outbox if not event_kind or r["event_kind"] == event_kind]
            return list(reversed(records))[:limit]

        query = {"event_kind": event_kind} if event_kind else {}
        cursor = self.db.email_logs.find(query, {"_id": 0}).sort("sent_at", -1).limit(limit)
        return await cursor.to_list(limit)
