"""
DocFlow Hub - Workflow Definition Store

Holds one ordered list of departmental stages per document type. Definitions
are validated and order-normalized on every save; the state machine only
ever reads them.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional
import logging
import uuid

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from services import docflow_config
from services.errors import NotFoundError, ValidationError
from services.storage import DocumentStore
from services.workflow_engine import Department, DocumentType

logger = logging.getLogger(__name__)


# =============================================================================
# MODELS
# =============================================================================

class Stage(BaseModel):
    department: Department
    order: int = Field(gt=0)
    approval_required: bool = True
    time_limit_hours: int = Field(default=docflow_config.DEFAULT_STAGE_TIME_LIMIT_HOURS, gt=0)

    model_config = {"use_enum_values": True}


class WorkflowDefinition(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = Field(min_length=1)
    document_type: DocumentType
    stages: List[Stage] = Field(min_length=1)
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    model_config = {"use_enum_values": True}

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value

    @model_validator(mode="after")
    def normalize_stages(self):
        # Sort by order; orders must be strictly increasing afterwards
        self.stages = sorted(self.stages, key=lambda s: s.order)
        orders = [s.order for s in self.stages]
        duplicates = sorted({o for o in orders if orders.count(o) > 1})
        if duplicates:
            raise ValueError(f"duplicate stage order values: {duplicates}")
        return self

    @property
    def entry_stage(self) -> Optional[Stage]:
        return self.stage_with_order(1)

    def stage_with_order(self, order: int) -> Optional[Stage]:
        return next((s for s in self.stages if s.order == order), None)


def parse_workflow(data: Dict) -> WorkflowDefinition:
    """Validate raw definition data, raising the workflow ValidationError."""
    try:
        return WorkflowDefinition.model_validate(data)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid workflow definition", {"errors": errors})


# =============================================================================
# STORE
# =============================================================================

class WorkflowStore:
    """Workflow definitions keyed by id, at most one active per document type."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        record = await self.store.get(workflow_id)
        return WorkflowDefinition.model_validate(record) if record else None

    async def get_active_workflow(self, document_type: str) -> Optional[WorkflowDefinition]:
        records = await self.store.find(
            {"document_type": document_type, "is_active": True}, limit=1
        )
        return WorkflowDefinition.model_validate(records[0]) if records else None

    async def workflow_ids_with_stage(self, document_type: str, departments: List[str]) -> List[str]:
        """Ids of definitions for a document type with a stage in any of the departments."""
        records = await self.store.find(
            {"document_type": document_type, "stages.department": {"$in": departments}}
        )
        return [r["id"] for r in records]

    async def list_workflows(self, active_only: bool = False) -> List[WorkflowDefinition]:
        predicate = {"is_active": True} if active_only else {}
        records = await self.store.find(predicate, sort=[("document_type", 1)])
        return [WorkflowDefinition.model_validate(r) for r in records]

    async def save(self, definition) -> WorkflowDefinition:
        """
        Validate, normalize and persist a definition (create or replace).

        Raises:
            ValidationError: empty stages, duplicate orders, bad values, or a
                name/document_type collision with another active definition
        """
        if isinstance(definition, WorkflowDefinition):
            definition = definition.model_dump()
        workflow = parse_workflow(definition)

        await self._check_collisions(workflow)

        now = datetime.now(timezone.utc).isoformat()
        existing = await self.store.get(workflow.id)
        workflow.created_at = existing.get("created_at") if existing else (workflow.created_at or now)
        workflow.updated_at = now
        record = workflow.model_dump()

        if existing:
            saved = await self.store.conditional_update(workflow.id, {}, {"$set": record})
            logger.info("Workflow updated: id=%s, type=%s, stages=%s",
                        workflow.id, workflow.document_type, [s.department for s in workflow.stages])
        else:
            saved = await self.store.create(record)
            logger.info("Workflow created: id=%s, type=%s, stages=%s",
                        workflow.id, workflow.document_type, [s.department for s in workflow.stages])
        return WorkflowDefinition.model_validate(saved)

    async def _check_collisions(self, workflow: WorkflowDefinition):
        # Inactive drafts never collide
        if not workflow.is_active:
            return
        active = await self.store.find({"is_active": True, "id": {"$ne": workflow.id}})
        for other in active:
            if other.get("name") == workflow.name:
                raise ValidationError(
                    f"An active workflow named '{workflow.name}' already exists",
                    {"conflicting_workflow_id": other["id"]},
                )
            if other.get("document_type") == workflow.document_type:
                raise ValidationError(
                    f"Document type '{workflow.document_type}' already has an active workflow",
                    {"conflicting_workflow_id": other["id"]},
                )

    async def patch_stage_department(
        self, workflow_id: str, order: int, new_department: str
    ) -> WorkflowDefinition:
        """Atomically change the department of the stage with the given order."""
        if new_department not in {d.value for d in Department}:
            raise ValidationError(f"Unknown department '{new_department}'")

        updated = await self.store.conditional_update(
            workflow_id,
            {"stages.order": order},
            {"$set": {
                "stages.$.department": new_department,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            }},
        )
        if updated is None:
            raise NotFoundError(
                f"Workflow '{workflow_id}' has no stage with order {order}",
                {"workflow_id": workflow_id, "order": order},
            )
        return WorkflowDefinition.model_validate(updated)


# =============================================================================
# DEFAULT DEFINITIONS
# =============================================================================

DEFAULT_WORKFLOWS: List[Dict] = [
    {
        "name": "Admission Application",
        "document_type": DocumentType.ADMISSION.value,
        "stages": [
            {"department": "admissions", "order": 1, "approval_required": True, "time_limit_hours": 24},
            {"department": "finance", "order": 2, "approval_required": True, "time_limit_hours": 48},
            {"department": "registrar", "order": 3, "approval_required": True, "time_limit_hours": 24},
        ],
    },
    {
        "name": "Scholarship Application",
        "document_type": DocumentType.SCHOLARSHIP.value,
        "stages": [
            {"department": "scholarship", "order": 1, "approval_required": True, "time_limit_hours": 48},
            {"department": "finance", "order": 2, "approval_required": True, "time_limit_hours": 72},
        ],
    },
    {
        "name": "Transfer Application",
        "document_type": DocumentType.TRANSFER.value,
        "stages": [
            {"department": "admissions", "order": 1, "approval_required": True, "time_limit_hours": 72},
            {"department": "registrar", "order": 2, "approval_required": True, "time_limit_hours": 48},
        ],
    },
]


async def seed_default_workflows(workflow_store: WorkflowStore) -> int:
    """Save the default definitions for document types that have no active workflow."""
    created = 0
    for definition in DEFAULT_WORKFLOWS:
        if await workflow_store.get_active_workflow(definition["document_type"]):
            continue
        await workflow_store.save(dict(definition))
        created += 1
    if created:
        logger.info("Seeded %d default workflow(s)", created)
    return created
