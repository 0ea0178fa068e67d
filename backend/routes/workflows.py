"""
DocFlow Hub - Workflows Router

Workflow definition management (admin) and the system repair log.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Any, Dict, Optional
from pydantic import BaseModel

from routes.auth import get_current_actor
from services.authorization import Actor, require_role
from services.workflow_engine import Role

router = APIRouter(prefix="/workflows", tags=["workflows"])

# Workflow services - set by main app
services = None

def set_dependencies(workflow_services):
    global services
    services = workflow_services


# ==================== MODELS ====================

class StagePatch(BaseModel):
    department: str


# ==================== DEFINITIONS ====================

@router.get("")
async def list_workflows(active_only: bool = Query(False)):
    workflows = await services.workflow_store.list_workflows(active_only=active_only)
    return {"workflows": [w.model_dump() for w in workflows], "total": len(workflows)}


@router.get("/active/{document_type}")
async def get_active_workflow(document_type: str):
    workflow = await services.workflow_store.get_active_workflow(document_type)
    if workflow is None:
        raise HTTPException(status_code=404, detail=f"No active workflow for '{document_type}'")
    return workflow.model_dump()


@router.get("/audit/events")
async def list_audit_events(
    kind: Optional[str] = Query(None),
    limit: int = Query(100),
    actor: Actor = Depends(get_current_actor),
):
    """System repair events (workflow corrections, re-routing sweeps)."""
    require_role(actor, Role.ADMIN)
    events = await services.audit.list_system_events(kind=kind, limit=limit)
    return {"events": events, "total": len(events)}


@router.get("/{workflow_id}")
async def get_workflow(workflow_id: str):
    workflow = await services.workflow_store.get_workflow(workflow_id)
    if workflow is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return workflow.model_dump()


@router.post("")
async def save_workflow(definition: Dict[str, Any], actor: Actor = Depends(get_current_actor)):
    """Create or replace a workflow definition. Stages are sorted by order on save."""
    require_role(actor, Role.ADMIN)
    workflow = await services.workflow_store.save(definition)
    return workflow.model_dump()


@router.patch("/{workflow_id}/stages/{order}")
async def patch_stage(
    workflow_id: str,
    order: int,
    patch: StagePatch,
    actor: Actor = Depends(get_current_actor),
):
    require_role(actor, Role.ADMIN)
    workflow = await services.workflow_store.patch_stage_department(workflow_id, order, patch.department)
    return workflow.model_dump()
