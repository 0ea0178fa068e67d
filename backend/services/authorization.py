"""
DocFlow Hub - Authorization Gate

Pure capability checks over (actor, document). No I/O, no side effects.

- can_view:   admin always; approver always; student only for own documents
- can_assign: approver in the document's department, document pending and unassigned
- can_act:    admin on any non-final document; approver in the document's
              department when unassigned or assigned to themselves
"""

from dataclasses import dataclass
from typing import Dict, Optional

from services.errors import AuthorizationError, ConflictError, ValidationError
from services.workflow_engine import DocumentStatus, FINAL_STATUSES, Role


@dataclass(frozen=True)
class Actor:
    id: str
    role: str
    department: Optional[str] = None

    def __post_init__(self):
        if self.role not in {r.value for r in Role}:
            raise ValidationError(f"Unknown role '{self.role}'")
        if self.role == Role.APPROVER.value and not self.department:
            raise ValidationError("Approvers must belong to a department")

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    @property
    def is_approver(self) -> bool:
        return self.role == Role.APPROVER.value

    @property
    def is_student(self) -> bool:
        return self.role == Role.STUDENT.value


def in_department(actor: Actor, document: Dict) -> bool:
    return actor.department is not None and actor.department == document.get("current_department")


def can_view(actor: Actor, document: Dict) -> bool:
    if actor.is_admin or actor.is_approver:
        return True
    return actor.is_student and document.get("student_id") == actor.id


def can_assign(actor: Actor, document: Dict) -> bool:
    return (
        actor.is_approver
        and in_department(actor, document)
        and document.get("status") == DocumentStatus.PENDING.value
        and document.get("assigned_to") is None
    )


def can_act(actor: Actor, document: Dict) -> bool:
    if document.get("status") in FINAL_STATUSES:
        return False
    if actor.is_admin:
        return True
    return (
        actor.is_approver
        and in_department(actor, document)
        and document.get("assigned_to") in (None, actor.id)
    )


# =============================================================================
# ENFORCEMENT HELPERS
# =============================================================================

def require_view(actor: Actor, document: Dict):
    if not can_view(actor, document):
        raise AuthorizationError("Not authorized to view this document",
                                 {"document_id": document.get("id")})


def require_department(actor: Actor, document: Dict):
    if not in_department(actor, document):
        raise AuthorizationError(
            "Not authorized for this department",
            {
                "document_id": document.get("id"),
                "actor_department": actor.department,
                "document_department": document.get("current_department"),
            },
        )


def require_role(actor: Actor, *roles: Role):
    if actor.role not in {r.value for r in roles}:
        raise AuthorizationError(
            f"Requires role: {', '.join(r.value for r in roles)}",
            {"actor_role": actor.role},
        )


def require_act(actor: Actor, document: Dict):
    """Raise the specific error explaining why can_act() is False."""
    if can_act(actor, document):
        return
    if not actor.is_admin:
        if not actor.is_approver:
            raise AuthorizationError("Only approvers and admins can act on documents",
                                     {"actor_role": actor.role})
        require_department(actor, document)
    if document.get("status") in FINAL_STATUSES:
        raise ConflictError(
            f"Document is already {document.get('status')}",
            {"document_id": document.get("id"), "status": document.get("status")},
        )
    raise ConflictError("Document already assigned to another approver",
                        {"document_id": document.get("id"), "assigned_to": document.get("assigned_to")})
