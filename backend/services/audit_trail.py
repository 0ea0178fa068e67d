"""
DocFlow Hub - Audit Trail

Document history is append-only: entries are only ever added with $push by
the document service and nothing here updates or removes them. This module
answers the audit queries and keeps a separate log of system repair events
(workflow corrections, bulk re-routing) so operators can see when and why
stored data changed outside a user action.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional
import logging
import uuid

from services.errors import NotFoundError
from services.storage import DocumentStore

logger = logging.getLogger(__name__)


class SystemEventKind(str, Enum):
    WORKFLOW_CORRECTED = "workflow-corrected"
    DOCUMENTS_REROUTED = "documents-rerouted"


class AuditTrail:
    def __init__(self, documents: DocumentStore, events: DocumentStore):
        self.documents = documents
        self.events = events

    async def documents_processed_by(self, actor_id: str) -> List[Dict]:
        """All documents with at least one history entry by actor_id, most recently updated first."""
        return await self.documents.find(
            {"history.actor_id": actor_id},
            sort=[("last_updated", -1)],
        )

    async def history_for(self, document_id: str) -> List[Dict]:
        document = await self.documents.get(document_id)
        if document is None:
            raise NotFoundError("Document not found", {"document_id": document_id})
        return list(document.get("history") or [])

    async def record_system_event(
        self,
        kind: SystemEventKind,
        subject_id: Optional[str],
        details: Optional[Dict] = None,
    ) -> Dict:
        event = {
            "id": str(uuid.uuid4()),
            "kind": kind.value,
            "subject_id": subject_id,
            "details": details or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        await self.events.create(event)
        logger.info("Audit event %s recorded for %s: %s", kind.value, subject_id, event["details"])
        return event

    async def list_system_events(self, kind: Optional[str] = None, limit: int = 100) -> List[Dict]:
        predicate = {"kind": kind} if kind else {}
        return await self.events.find(predicate, sort=[("timestamp", -1)], limit=limit)
