"""
DocFlow Hub - Documents Router

Submission, assignment, approver actions and queries over documents.
"""

from fastapi import APIRouter, Depends
from typing import Optional
from pydantic import BaseModel

from routes.auth import get_current_actor
from services.authorization import Actor, require_role
from services.workflow_engine import Role

router = APIRouter(prefix="/documents", tags=["documents"])

# Workflow services - set by main app
services = None

def set_dependencies(workflow_services):
    global services
    services = workflow_services


# ==================== MODELS ====================

class FileMeta(BaseModel):
    file_ref: str
    file_name: str
    file_type: str
    file_size: int


class SubmitRequest(BaseModel):
    title: str
    description: Optional[str] = ""
    document_type: str
    file: FileMeta


class StatusRequest(BaseModel):
    action: str
    comment: Optional[str] = ""


# ==================== SUBMISSION ====================

@router.post("", status_code=201)
async def submit_document(req: SubmitRequest, actor: Actor = Depends(get_current_actor)):
    """Submit a document for approval (students only)."""
    require_role(actor, Role.STUDENT)
    document = await services.documents.submit_document(
        student_id=actor.id,
        document_type=req.document_type,
        file_meta=req.file.model_dump(),
        title=req.title,
        description=req.description or "",
    )
    return document


# ==================== QUERIES ====================

@router.get("")
async def list_all_documents(actor: Actor = Depends(get_current_actor)):
    """All documents (admin only)."""
    docs = await services.documents.list_all_documents(actor)
    return {"documents": docs, "count": len(docs)}


@router.get("/mine")
async def list_my_documents(actor: Actor = Depends(get_current_actor)):
    require_role(actor, Role.STUDENT)
    docs = await services.documents.list_student_documents(actor.id)
    return {"documents": docs, "count": len(docs)}


@router.get("/pending")
async def list_pending_documents(actor: Actor = Depends(get_current_actor)):
    """Open queue for the approver's department; admins see every department."""
    docs = await services.documents.list_for_approver(actor)
    return {"documents": docs, "count": len(docs)}


@router.get("/approval-history")
async def get_approval_history(actor: Actor = Depends(get_current_actor)):
    """Documents the current approver has acted on."""
    docs = await services.documents.get_approval_history(actor)
    return {"documents": docs, "count": len(docs)}


@router.get("/stats")
async def get_document_stats(actor: Actor = Depends(get_current_actor)):
    return await services.documents.get_stats(actor)


@router.get("/{doc_id}")
async def get_document(doc_id: str, actor: Actor = Depends(get_current_actor)):
    return await services.documents.get_document(doc_id, actor)


@router.get("/{doc_id}/history")
async def get_document_history(doc_id: str, actor: Actor = Depends(get_current_actor)):
    document = await services.documents.get_document(doc_id, actor)
    return {
        "document_id": doc_id,
        "status": document.get("status"),
        "current_stage": document.get("current_stage"),
        "history": document.get("history", []),
    }


# ==================== WORKFLOW ACTIONS ====================

@router.put("/{doc_id}/assign")
async def assign_to_self(doc_id: str, actor: Actor = Depends(get_current_actor)):
    require_role(actor, Role.APPROVER, Role.ADMIN)
    document = await services.documents.assign_to_self(doc_id, actor)
    return {"document": document, "message": "Document assigned to you successfully"}


@router.put("/{doc_id}/status")
async def update_document_status(
    doc_id: str,
    req: StatusRequest,
    actor: Actor = Depends(get_current_actor),
):
    """Approve, reject, return or forward a document."""
    require_role(actor, Role.APPROVER, Role.ADMIN)
    result = await services.documents.apply_action(doc_id, actor, req.action, req.comment or "")
    history_action = result.document["history"][-1]["action"]
    return {
        **result.to_dict(),
        "message": f"Document {history_action} successfully",
    }
