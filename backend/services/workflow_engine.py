"""
DocFlow Hub - Document Workflow Engine

This module implements the deterministic state machine that moves a student
document through its departmental review stages. It is pure business logic
with no direct HTTP or DB calls; services/document_service.py owns the reads,
the conditional writes and the notifications around it.

Stage model:
- A workflow is a short ordered list of stages, one department per stage.
- currentStage is either a department code or one of the terminal markers
  'completed', 'rejected', 'returned'. Internally it is a tagged StageRef
  (DepartmentStage | TerminalStage) serialized to the same strings.
- 'forward' always escalates to the fixed 'admin' department.

Transition precedence for approve:
- admin actor, no workflow, last stage, or current department 'admin'
  -> approved / completed
- otherwise -> pending at the next stage's department
reject / return / forward ignore the stage position.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import logging

from services.errors import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# ENUMERATIONS (persisted string values, do not change)
# =============================================================================

class DocumentType(str, Enum):
    """Kinds of documents a student can submit."""
    ADMISSION = "admission"
    SCHOLARSHIP = "scholarship"
    TRANSFER = "transfer"
    GRADUATION = "graduation"
    OTHER = "other"


class DocumentStatus(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in-review"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED = "returned"
    FORWARDED = "forwarded"


class Department(str, Enum):
    ADMISSIONS = "admissions"
    FINANCE = "finance"
    REGISTRAR = "registrar"
    SCHOLARSHIP = "scholarship"
    ADMIN = "admin"


class Role(str, Enum):
    STUDENT = "student"
    APPROVER = "approver"
    ADMIN = "admin"


class WorkflowAction(str, Enum):
    """Actions an approver can request on a document."""
    APPROVE = "approve"
    REJECT = "reject"
    RETURN = "return"
    FORWARD = "forward"


class HistoryAction(str, Enum):
    """Action kinds recorded in the audit history."""
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED = "returned"
    FORWARDED = "forwarded"
    ASSIGNED = "assigned"  # only written when RECORD_ASSIGNMENT_HISTORY is on


class TerminalKind(str, Enum):
    COMPLETED = "completed"
    REJECTED = "rejected"
    RETURNED = "returned"


# Status groups
TERMINAL_STATUSES = {
    DocumentStatus.APPROVED.value,
    DocumentStatus.REJECTED.value,
    DocumentStatus.RETURNED.value,
}
# No further action is accepted on these, not even from an admin
FINAL_STATUSES = {
    DocumentStatus.APPROVED.value,
    DocumentStatus.REJECTED.value,
}
QUEUE_STATUSES = [
    DocumentStatus.PENDING.value,
    DocumentStatus.IN_REVIEW.value,
    DocumentStatus.FORWARDED.value,
]
OPEN_STATUSES = [
    DocumentStatus.PENDING.value,
    DocumentStatus.IN_REVIEW.value,
]

PAST_TENSE = {
    WorkflowAction.APPROVE: HistoryAction.APPROVED,
    WorkflowAction.REJECT: HistoryAction.REJECTED,
    WorkflowAction.RETURN: HistoryAction.RETURNED,
    WorkflowAction.FORWARD: HistoryAction.FORWARDED,
}

SUBMISSION_COMMENT = "Document submitted for approval"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# STAGE REFERENCES
# =============================================================================

@dataclass(frozen=True)
class DepartmentStage:
    """Document is waiting on a department."""
    department: str
    is_terminal = False

    @property
    def value(self) -> str:
        return self.department


@dataclass(frozen=True)
class TerminalStage:
    """Document left the workflow."""
    kind: TerminalKind
    is_terminal = True

    @property
    def value(self) -> str:
        return self.kind.value


StageRef = Union[DepartmentStage, TerminalStage]

_TERMINAL_MARKERS = {k.value: k for k in TerminalKind}


def parse_stage(raw: Optional[str]) -> Optional[StageRef]:
    """Parse a persisted currentStage string into a StageRef."""
    if not raw:
        return None
    if raw in _TERMINAL_MARKERS:
        return TerminalStage(_TERMINAL_MARKERS[raw])
    return DepartmentStage(raw)


# =============================================================================
# HISTORY ENTRY
# =============================================================================

class HistoryEntry:
    """A single, immutable entry in a document's audit history."""

    def __init__(
        self,
        stage: str,
        action: HistoryAction,
        actor_id: Optional[str] = None,
        comment: str = "",
        timestamp: Optional[str] = None,
    ):
        self.stage = stage
        self.action = action
        self.actor_id = actor_id
        self.comment = comment or ""
        self.timestamp = timestamp or datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict:
        entry = {
            "stage": self.stage,
            "action": self.action.value,
            "comment": self.comment,
            "timestamp": self.timestamp,
        }
        # system-generated entries carry no actor
        if self.actor_id is not None:
            entry["actor_id"] = self.actor_id
        return entry


# =============================================================================
# TRANSITION RESULT
# =============================================================================

@dataclass
class Transition:
    """Outcome of applying one action to a document, before persistence."""
    action: WorkflowAction
    status: DocumentStatus
    stage: StageRef
    department: Optional[str]
    history_action: HistoryAction
    advanced: bool = False
    time_limit_hours: Optional[int] = None

    @property
    def patch(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "current_stage": self.stage.value,
            "current_department": self.department,
        }


@dataclass
class InvariantReport:
    document_id: Optional[str]
    violations: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations


# =============================================================================
# MAIN WORKFLOW ENGINE
# =============================================================================

class WorkflowEngine:
    """
    Document workflow state machine.

    Reads a document dict and (optionally) its workflow definition and
    decides the next state. Never mutates its inputs.
    """

    @staticmethod
    def parse_action(action: Union[str, WorkflowAction]) -> WorkflowAction:
        try:
            return WorkflowAction(action)
        except ValueError:
            valid = [a.value for a in WorkflowAction]
            raise ValidationError(
                f"Invalid action '{action}'. Must be one of: {', '.join(valid)}",
                {"action": action, "valid_actions": valid},
            )

    @staticmethod
    def past_tense(action: Union[str, WorkflowAction]) -> HistoryAction:
        return PAST_TENSE[WorkflowEngine.parse_action(action)]

    @staticmethod
    def stage_index(workflow, current_stage: Optional[str]) -> Optional[int]:
        """Index of the workflow stage whose department equals current_stage."""
        for index, stage in enumerate(workflow.stages):
            if stage.department == current_stage:
                return index
        return None

    @staticmethod
    def resolve_transition(
        document: Dict,
        workflow,
        action: Union[str, WorkflowAction],
        actor_role: str,
    ) -> Transition:
        """
        Compute the next state for an action.

        Args:
            document: The document dict (not modified)
            workflow: The WorkflowDefinition the document was routed with, or None
            action: approve | reject | return | forward
            actor_role: Role of the acting user

        Returns:
            Transition describing the new status, stage and department
        """
        action = WorkflowEngine.parse_action(action)
        history_action = PAST_TENSE[action]

        if action == WorkflowAction.REJECT:
            return Transition(action, DocumentStatus.REJECTED,
                              TerminalStage(TerminalKind.REJECTED), None, history_action)
        if action == WorkflowAction.RETURN:
            return Transition(action, DocumentStatus.RETURNED,
                              TerminalStage(TerminalKind.RETURNED), None, history_action)
        if action == WorkflowAction.FORWARD:
            return Transition(action, DocumentStatus.FORWARDED,
                              DepartmentStage(Department.ADMIN.value), Department.ADMIN.value,
                              history_action)

        approved = Transition(action, DocumentStatus.APPROVED,
                              TerminalStage(TerminalKind.COMPLETED), None, history_action)

        if (
            actor_role == Role.ADMIN.value
            or workflow is None
            or document.get("current_department") == Department.ADMIN.value
        ):
            return approved

        current_stage = document.get("current_stage")
        index = WorkflowEngine.stage_index(workflow, current_stage)
        if index is None:
            raise ConfigurationError(
                f"Stage '{current_stage}' is not part of workflow '{workflow.name}'",
                {"workflow_id": workflow.id, "stage": current_stage},
            )
        if index == len(workflow.stages) - 1:
            return approved

        next_stage = workflow.stages[index + 1]
        return Transition(
            action,
            DocumentStatus.PENDING,
            DepartmentStage(next_stage.department),
            next_stage.department,
            history_action,
            advanced=True,
            time_limit_hours=next_stage.time_limit_hours,
        )

    @staticmethod
    def build_history_entry(
        stage: Optional[str],
        action: HistoryAction,
        actor_id: Optional[str],
        comment: str,
        at: datetime,
    ) -> Dict:
        return HistoryEntry(
            stage=stage,
            action=action,
            actor_id=actor_id,
            comment=comment,
            timestamp=at.isoformat(),
        ).to_dict()

    @staticmethod
    def monotonic_timestamp(history: List[Dict], now: datetime) -> datetime:
        """Never return a timestamp older than the last history entry."""
        if history:
            last = datetime.fromisoformat(history[-1]["timestamp"])
            if last > now:
                return last
        return now

    @staticmethod
    def due_date(entered_at: datetime, time_limit_hours: Optional[int]) -> Optional[str]:
        if not time_limit_hours:
            return None
        return (entered_at + timedelta(hours=time_limit_hours)).isoformat()

    @staticmethod
    def initialize_document(
        document_id: str,
        student_id: str,
        document_type: str,
        title: str,
        description: str,
        file_meta: Dict,
        department: str,
        workflow_id: Optional[str],
        time_limit_hours: Optional[int],
        now: datetime,
    ) -> Dict:
        """Build a freshly submitted document: status pending, history [submitted]."""
        timestamp = now.isoformat()
        submitted = HistoryEntry(
            stage=department,
            action=HistoryAction.SUBMITTED,
            comment=SUBMISSION_COMMENT,
            timestamp=timestamp,
        )
        return {
            "id": document_id,
            "title": title,
            "description": description,
            "student_id": student_id,
            **file_meta,
            "document_type": document_type,
            "status": DocumentStatus.PENDING.value,
            "current_stage": department,
            "current_department": department,
            "assigned_to": None,
            "workflow_id": workflow_id,
            "history": [submitted.to_dict()],
            "submission_date": timestamp,
            "last_updated": timestamp,
            "due_date": WorkflowEngine.due_date(now, time_limit_hours),
        }

    @staticmethod
    def check_invariants(document: Dict) -> InvariantReport:
        """Validate the structural invariants every stored document must hold."""
        report = InvariantReport(document.get("id"))
        status = document.get("status")
        department = document.get("current_department")

        if (department is None) != (status in TERMINAL_STATUSES):
            report.violations.append(
                f"current_department={department!r} inconsistent with status={status!r}"
            )

        history = document.get("history") or []
        if not history:
            report.violations.append("history is empty")
        elif history[0].get("action") != HistoryAction.SUBMITTED.value:
            report.violations.append("first history entry is not 'submitted'")

        stamps = [datetime.fromisoformat(e["timestamp"]) for e in history if e.get("timestamp")]
        if any(later < earlier for earlier, later in zip(stamps, stamps[1:])):
            report.violations.append("history timestamps are not monotonic")

        if status in TERMINAL_STATUSES and document.get("assigned_to") is not None:
            report.violations.append("terminal document still assigned")

        return report

    @staticmethod
    def get_all_statuses() -> List[str]:
        return [s.value for s in DocumentStatus]

    @staticmethod
    def get_all_document_types() -> List[str]:
        return [t.value for t in DocumentType]
