"""
DocFlow Hub - User Directory

Read-only view of the users collection owned by the identity service.
The workflow core only needs approver lookups per department and the
student's contact address for notifications.
"""

from typing import Dict, List, Optional

from services.storage import DocumentStore
from services.workflow_engine import Role


class UserDirectory:
    def __init__(self, users: DocumentStore):
        self.users = users

    async def find_approvers(self, department: str) -> List[Dict]:
        """Active approvers of a department as [{id, email, is_active}]."""
        records = await self.users.find({
            "role": Role.APPROVER.value,
            "department": department,
            "is_active": True,
        })
        return [
            {"id": r["id"], "email": r.get("email"), "is_active": r.get("is_active", True)}
            for r in records
        ]

    async def is_active(self, user_id: str) -> bool:
        user = await self.users.get(user_id)
        return bool(user and user.get("is_active", True))

    async def get_user(self, user_id: str) -> Optional[Dict]:
        return await self.users.get(user_id)
