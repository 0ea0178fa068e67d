"""
DocFlow Hub - Department Routing

Decides which department a newly submitted document enters, and owns the
single document type -> department fallback table used by initial routing,
queue filtering, stats scoping and the reconciliation sweep.

Special case (one-shot repair): older deployments stored the scholarship
workflow with 'admissions' as its entry stage. When that definition is met
on submission the document is routed to 'scholarship' instead and the stored
stage is corrected, with a 'workflow-corrected' audit event.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional
import logging

from services.audit_trail import AuditTrail, SystemEventKind
from services.errors import ConfigurationError, ValidationError
from services.storage import DocumentStore
from services.workflow_engine import Department, DocumentType, OPEN_STATUSES, utc_now
from services.workflow_store import WorkflowStore

logger = logging.getLogger(__name__)


# =============================================================================
# FALLBACK TABLE
# =============================================================================

DEFAULT_DEPARTMENT_BY_TYPE: Dict[str, str] = {
    DocumentType.ADMISSION.value: Department.ADMISSIONS.value,
    DocumentType.SCHOLARSHIP.value: Department.SCHOLARSHIP.value,
    DocumentType.TRANSFER.value: Department.ADMISSIONS.value,
    DocumentType.GRADUATION.value: Department.REGISTRAR.value,
    DocumentType.OTHER.value: Department.ADMIN.value,
}

# Known historical misroutes: document type -> departments it must not sit in
# while its default department owns it.
KNOWN_MISROUTES: Dict[str, List[str]] = {
    DocumentType.SCHOLARSHIP.value: [Department.ADMISSIONS.value],
}

# Entry-stage correction applied by resolve(): (document type, stored dept) -> dept
ENTRY_STAGE_CORRECTIONS: Dict[tuple, str] = {
    (DocumentType.SCHOLARSHIP.value, Department.ADMISSIONS.value): Department.SCHOLARSHIP.value,
}

UNROUTED = [None, ""]


def default_department(document_type: str) -> str:
    try:
        return DEFAULT_DEPARTMENT_BY_TYPE[DocumentType(document_type).value]
    except ValueError:
        raise ValidationError(
            f"Invalid document type '{document_type}'",
            {"valid_types": list(DEFAULT_DEPARTMENT_BY_TYPE)},
        )


def types_routed_to(department: str) -> List[str]:
    """Document types whose fallback department is the given department."""
    return [t for t, d in DEFAULT_DEPARTMENT_BY_TYPE.items() if d == department]


def queue_filter(department: str) -> Dict:
    """Predicate for documents owned by a department, including unrouted ones of its types."""
    return {
        "$or": [
            {"current_department": department},
            {
                "current_department": {"$in": UNROUTED},
                "document_type": {"$in": types_routed_to(department)},
            },
        ]
    }


# =============================================================================
# RESOLVER
# =============================================================================

@dataclass
class RoutingDecision:
    department: str
    stage: str
    workflow_id: Optional[str]
    time_limit_hours: Optional[int] = None
    corrected: bool = False


class DepartmentRouter:
    def __init__(
        self,
        workflow_store: WorkflowStore,
        documents: DocumentStore,
        audit: AuditTrail,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.workflow_store = workflow_store
        self.documents = documents
        self.audit = audit
        self.clock = clock

    async def resolve(self, document_type: str) -> RoutingDecision:
        """
        Pick the entry stage for a new document.

        Raises:
            ValidationError: unknown document type
            ConfigurationError: active workflow without an order-1 stage
        """
        fallback = default_department(document_type)
        workflow = await self.workflow_store.get_active_workflow(document_type)

        if workflow is None:
            logger.info("No active workflow for %s, routing to default department %s",
                        document_type, fallback)
            return RoutingDecision(department=fallback, stage=fallback, workflow_id=None)

        entry = workflow.entry_stage
        if entry is None:
            raise ConfigurationError(
                f"Workflow '{workflow.name}' has no stage with order 1",
                {"workflow_id": workflow.id, "orders": [s.order for s in workflow.stages]},
            )

        department = entry.department
        corrected = False
        replacement = ENTRY_STAGE_CORRECTIONS.get((document_type, department))
        if replacement:
            await self._correct_entry_stage(workflow.id, document_type, department, replacement)
            department = replacement
            corrected = True

        return RoutingDecision(
            department=department,
            stage=department,
            workflow_id=workflow.id,
            time_limit_hours=entry.time_limit_hours,
            corrected=corrected,
        )

    async def _correct_entry_stage(self, workflow_id: str, document_type: str, wrong: str, right: str):
        logger.warning("Correcting %s workflow %s entry stage: %s -> %s",
                       document_type, workflow_id, wrong, right)
        await self.workflow_store.patch_stage_department(workflow_id, 1, right)
        await self.audit.record_system_event(
            SystemEventKind.WORKFLOW_CORRECTED,
            workflow_id,
            {"document_type": document_type, "order": 1, "from": wrong, "to": right},
        )

    async def fix_misrouted(self, department: str) -> int:
        """
        Reconciliation sweep: move open documents that belong to this department
        by default but are unrouted or sitting in a known wrong department.

        A document whose own workflow has a stage in that wrong department is
        at a legitimate stage and is left alone.

        Best effort and idempotent. Errors are logged and reported as 0 changes.
        """
        try:
            modified = 0
            for document_type in types_routed_to(department):
                modified += await self.documents.update_many(
                    {
                        "document_type": document_type,
                        "status": {"$in": OPEN_STATUSES},
                        "$or": await self._stale_placements(document_type),
                    },
                    {"$set": {
                        "current_department": department,
                        "current_stage": department,
                        "last_updated": self.clock().isoformat(),
                    }},
                )
            if modified:
                logger.info("Re-routed %d document(s) to %s", modified, department)
                await self.audit.record_system_event(
                    SystemEventKind.DOCUMENTS_REROUTED, department, {"modified": modified}
                )
            return modified
        except Exception:
            logger.exception("Reconciliation sweep failed for department %s", department)
            return 0

    async def _stale_placements(self, document_type: str) -> List[Dict]:
        placements = [{"current_department": {"$in": UNROUTED}}]
        misroutes = KNOWN_MISROUTES.get(document_type)
        if misroutes:
            legitimate = await self.workflow_store.workflow_ids_with_stage(document_type, misroutes)
            placements.append({
                "current_department": {"$in": misroutes},
                "workflow_id": {"$nin": legitimate},
            })
        return placements
