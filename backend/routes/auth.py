"""
DocFlow Hub - Actor Identity

Credentials are issued and verified by the upstream gateway; it forwards the
authenticated identity as request headers. This module only turns those
headers into an Actor for the workflow core.
"""

from typing import Optional

from fastapi import Header, HTTPException

from services.authorization import Actor


async def get_current_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
    x_actor_department: Optional[str] = Header(None),
) -> Actor:
    """Resolve the acting user from gateway headers (401 when absent)."""
    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=401, detail="Missing actor identity")
    return Actor(
        id=x_actor_id,
        role=x_actor_role.strip().lower(),
        department=(x_actor_department or "").strip().lower() or None,
    )
