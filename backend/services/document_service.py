"""
DocFlow Hub - Document Workflow Service

The public surface of the workflow core. Each operation reads the document,
lets the authorization gate and the workflow engine decide, and commits the
result with a single conditional write so concurrent callers can not both
win. Notifications are scheduled only after that write has committed.

Operations:
- submit_document: route and create a new document (status pending)
- assign_to_self: claim a document in the actor's department
- apply_action: approve / reject / return / forward
- list_for_approver, get_stats, get_document, list_student_documents,
  list_all_documents, get_approval_history
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional
import logging
import uuid

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from services import docflow_config
from services.audit_trail import AuditTrail
from services.authorization import (
    Actor,
    require_act,
    require_department,
    require_role,
    require_view,
)
from services.errors import ConflictError, NotFoundError, ValidationError, WorkflowError
from services.notifications import (
    NotificationDispatcher,
    NotificationEvent,
    RealtimeEvent,
    outcome_event,
)
from services.routing import DepartmentRouter, default_department, queue_filter
from services.storage import DocumentStore
from services.workflow_engine import (
    DocumentStatus,
    DocumentType,
    HistoryAction,
    QUEUE_STATUSES,
    Role,
    Transition,
    WorkflowAction,
    WorkflowEngine,
    utc_now,
)
from services.workflow_store import WorkflowStore

logger = logging.getLogger(__name__)


# =============================================================================
# MODELS
# =============================================================================

class SubmissionFile(BaseModel):
    """File metadata handed over by the upload collaborator. Opaque beyond these checks."""
    file_ref: str = Field(min_length=1)
    file_name: str = Field(min_length=1)
    file_type: str
    file_size: int = Field(gt=0)

    @field_validator("file_type")
    @classmethod
    def check_type(cls, value: str) -> str:
        if value not in docflow_config.ALLOWED_FILE_TYPES:
            raise ValueError(
                f"Invalid file type. Allowed: {', '.join(docflow_config.ALLOWED_FILE_TYPES)}"
            )
        return value

    @field_validator("file_size")
    @classmethod
    def check_size(cls, value: int) -> int:
        if value > docflow_config.MAX_UPLOAD_BYTES:
            raise ValueError(f"File size exceeds {docflow_config.MAX_UPLOAD_BYTES} bytes")
        return value


@dataclass
class ActionResult:
    document: Dict
    previous_stage: Optional[str]
    next_department: Optional[str]
    department_changed: bool

    def to_dict(self) -> Dict:
        return {
            "document": self.document,
            "previous_stage": self.previous_stage,
            "next_department": self.next_department,
            "department_changed": self.department_changed,
        }


# =============================================================================
# SERVICE
# =============================================================================

class DocumentWorkflowService:
    def __init__(
        self,
        documents: DocumentStore,
        workflow_store: WorkflowStore,
        router: DepartmentRouter,
        audit: AuditTrail,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = utc_now,
        record_assignment_history: Optional[bool] = None,
    ):
        self.documents = documents
        self.workflow_store = workflow_store
        self.router = router
        self.audit = audit
        self.dispatcher = dispatcher
        self.clock = clock
        if record_assignment_history is None:
            record_assignment_history = docflow_config.RECORD_ASSIGNMENT_HISTORY
        self.record_assignment_history = record_assignment_history

    # ==================== SUBMISSION ====================

    async def submit_document(
        self,
        student_id: str,
        document_type: str,
        file_meta: Dict,
        title: str,
        description: str = "",
    ) -> Dict:
        """Route a new document to its entry stage and create it with history [submitted]."""
        title = (title or "").strip()
        if not title:
            raise ValidationError("Please provide document title")
        default_department(document_type)  # rejects unknown types before any lookup
        file = self._parse_file(file_meta)

        decision = await self.router.resolve(document_type)
        document = WorkflowEngine.initialize_document(
            document_id=str(uuid.uuid4()),
            student_id=student_id,
            document_type=DocumentType(document_type).value,
            title=title,
            description=description or "",
            file_meta=file.model_dump(),
            department=decision.department,
            workflow_id=decision.workflow_id,
            time_limit_hours=decision.time_limit_hours,
            now=self.clock(),
        )
        created = await self.documents.create(document)
        logger.info(
            "Document submitted: doc=%s, type=%s, student=%s, department=%s, workflow=%s",
            created["id"], document_type, student_id, decision.department, decision.workflow_id,
        )

        payload = {"document_id": created["id"], "title": title, "department": decision.department}
        self.dispatcher.notify_approvers(decision.department, NotificationEvent.DOCUMENT_SUBMITTED, payload)
        self.dispatcher.publish(decision.department, RealtimeEvent.NEW_DOCUMENT, payload)
        return created

    @staticmethod
    def _parse_file(file_meta: Dict) -> SubmissionFile:
        try:
            return SubmissionFile.model_validate(file_meta or {})
        except PydanticValidationError as e:
            errors = [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]
            raise ValidationError("Invalid file metadata", {"errors": errors})

    # ==================== ASSIGNMENT ====================

    async def assign_to_self(self, document_id: str, actor: Actor) -> Dict:
        """
        Claim a document for review.

        Raises:
            NotFoundError: unknown document
            AuthorizationError: actor is not an approver or admin, or not in the
                document's department
            ConflictError: already assigned to someone else, or lost a concurrent claim
        """
        require_role(actor, Role.APPROVER, Role.ADMIN)
        document = await self._get_or_404(document_id)
        require_department(actor, document)
        if document.get("assigned_to") not in (None, actor.id):
            raise ConflictError(
                "Document already assigned to another approver",
                {"document_id": document_id, "assigned_to": document.get("assigned_to")},
            )

        now = WorkflowEngine.monotonic_timestamp(document.get("history") or [], self.clock())
        patch = {"$set": {
            "assigned_to": actor.id,
            "status": DocumentStatus.IN_REVIEW.value,
            "last_updated": now.isoformat(),
        }}
        entry = self._assignment_history_entry(document, actor, now)
        if entry is not None:
            patch["$push"] = {"history": entry}

        updated = await self.documents.conditional_update(
            document_id,
            {
                "current_department": actor.department,
                "assigned_to": {"$in": [None, actor.id]},
            },
            patch,
        )
        if updated is None:
            await self._raise_lost_update(document_id)

        logger.info("Document assigned: doc=%s, actor=%s, department=%s",
                    document_id, actor.id, actor.department)
        self.dispatcher.publish(updated["student_id"], RealtimeEvent.DOCUMENT_ASSIGNED, {
            "document_id": document_id,
            "assigned_to": actor.id,
            "timestamp": now.isoformat(),
        })
        return updated

    def _assignment_history_entry(self, document: Dict, actor: Actor, now: datetime) -> Optional[Dict]:
        """The only place that decides whether assignment is audited."""
        if not self.record_assignment_history:
            return None
        return WorkflowEngine.build_history_entry(
            document.get("current_stage"), HistoryAction.ASSIGNED, actor.id, "", now
        )

    # ==================== ACTIONS ====================

    async def apply_action(
        self,
        document_id: str,
        actor: Actor,
        action: str,
        comment: str = "",
    ) -> ActionResult:
        """
        Approve, reject, return or forward a document.

        The history entry records the stage the action was taken at, not the
        destination. The whole update is one conditional write guarded on the
        state that was read; a concurrent change raises ConflictError.
        """
        action = WorkflowEngine.parse_action(action)
        document = await self._get_or_404(document_id)
        try:
            require_act(actor, document)
        except WorkflowError as e:
            logger.warning("Blocked %s on doc=%s by actor=%s (%s): %s",
                           action.value, document_id, actor.id, actor.role, e.message)
            raise

        workflow = await self._workflow_for(document)
        transition = WorkflowEngine.resolve_transition(document, workflow, action, actor.role)

        previous_stage = document.get("current_stage")
        history = document.get("history") or []
        now = WorkflowEngine.monotonic_timestamp(history, self.clock())
        entry = WorkflowEngine.build_history_entry(
            previous_stage, transition.history_action, actor.id, comment or "", now
        )

        updated = await self.documents.conditional_update(
            document_id,
            {
                "status": document.get("status"),
                "current_stage": previous_stage,
                "assigned_to": document.get("assigned_to"),
                "last_updated": document.get("last_updated"),
            },
            {
                "$set": {
                    **transition.patch,
                    "assigned_to": None,
                    "last_updated": now.isoformat(),
                    "due_date": WorkflowEngine.due_date(now, transition.time_limit_hours),
                },
                "$push": {"history": entry},
            },
        )
        if updated is None:
            await self._raise_lost_update(document_id)

        report = WorkflowEngine.check_invariants(updated)
        if not report.ok:
            logger.error("Invariant violation after %s on doc=%s: %s",
                         action.value, document_id, report.violations)

        logger.info(
            "Workflow transition: doc=%s, %s/%s -> %s/%s (action=%s, actor=%s)",
            document_id, document.get("status"), previous_stage,
            transition.status.value, transition.stage.value, action.value, actor.id,
        )

        department_changed = (
            transition.department is not None
            and transition.department != document.get("current_department")
        )
        self._announce_action(updated, transition, comment, now)
        return ActionResult(
            document=updated,
            previous_stage=previous_stage,
            next_department=transition.department,
            department_changed=department_changed,
        )

    def _announce_action(self, document: Dict, transition: Transition, comment: str, now: datetime):
        payload = {
            "document_id": document["id"],
            "title": document.get("title", ""),
            "action": transition.history_action.value,
            "comment": comment or "",
            "department": transition.department,
        }
        self.dispatcher.notify_user(
            document.get("student_id"), outcome_event(transition.history_action.value), payload
        )
        if transition.action == WorkflowAction.APPROVE and transition.department:
            self.dispatcher.notify_approvers(
                transition.department, NotificationEvent.FORWARDED_FOR_APPROVAL, payload
            )
        self.dispatcher.publish(document.get("student_id"), RealtimeEvent.DOCUMENT_UPDATED, {
            "document_id": document["id"],
            "status": transition.status.value,
            "action": transition.action.value,
            "timestamp": now.isoformat(),
        })
        if transition.department:
            self.dispatcher.publish(transition.department, RealtimeEvent.NEW_DOCUMENT, {
                "document_id": document["id"],
                "title": document.get("title", ""),
                "department": transition.department,
            })

    async def _workflow_for(self, document: Dict):
        workflow_id = document.get("workflow_id")
        if not workflow_id:
            return None
        workflow = await self.workflow_store.get_workflow(workflow_id)
        if workflow is None:
            logger.warning("Workflow %s of doc=%s no longer exists, treating as unmanaged",
                           workflow_id, document.get("id"))
        return workflow

    # ==================== QUERIES ====================

    async def get_document(self, document_id: str, actor: Actor) -> Dict:
        document = await self._get_or_404(document_id)
        require_view(actor, document)
        return document

    async def list_student_documents(self, student_id: str) -> List[Dict]:
        return await self.documents.find({"student_id": student_id}, sort=[("submission_date", -1)])

    async def list_all_documents(self, actor: Actor) -> List[Dict]:
        require_role(actor, Role.ADMIN)
        return await self.documents.find({}, sort=[("submission_date", -1)])

    async def list_for_approver(self, actor: Actor) -> List[Dict]:
        """Open queue for an approver's department (every department for admins)."""
        require_role(actor, Role.APPROVER, Role.ADMIN)
        query: Dict = {"status": {"$in": QUEUE_STATUSES}}
        if actor.is_approver:
            await self.router.fix_misrouted(actor.department)
            query.update(queue_filter(actor.department))
        return await self.documents.find(query, sort=[("last_updated", -1)])

    async def get_approval_history(self, actor: Actor) -> List[Dict]:
        require_role(actor, Role.APPROVER, Role.ADMIN)
        return await self.audit.documents_processed_by(actor.id)

    def stats_scope(self, actor: Actor) -> Dict:
        if actor.is_student:
            return {"student_id": actor.id}
        if actor.is_approver:
            return queue_filter(actor.department)
        return {}

    async def get_stats(self, actor: Actor) -> Dict[str, int]:
        return await self.count_by_status(self.stats_scope(actor))

    async def count_by_status(self, scope: Dict) -> Dict[str, int]:
        """Counts for a scope. 'pending' includes forwarded documents awaiting the admin."""
        async def count(*statuses: DocumentStatus) -> int:
            return await self.documents.count({**scope, "status": {"$in": [s.value for s in statuses]}})

        return {
            "total": await self.documents.count(scope),
            "pending": await count(DocumentStatus.PENDING, DocumentStatus.FORWARDED),
            "in_review": await count(DocumentStatus.IN_REVIEW),
            "approved": await count(DocumentStatus.APPROVED),
            "rejected": await count(DocumentStatus.REJECTED),
            "returned": await count(DocumentStatus.RETURNED),
        }

    # ==================== HELPERS ====================

    async def _get_or_404(self, document_id: str) -> Dict:
        document = await self.documents.get(document_id)
        if document is None:
            raise NotFoundError("Document not found", {"document_id": document_id})
        return document

    async def _raise_lost_update(self, document_id: str):
        current = await self.documents.get(document_id)
        if current is None:
            raise NotFoundError("Document not found", {"document_id": document_id})
        raise ConflictError(
            "Document was changed by another request, reload and retry",
            {
                "document_id": document_id,
                "status": current.get("status"),
                "assigned_to": current.get("assigned_to"),
                "current_department": current.get("current_department"),
            },
        )
