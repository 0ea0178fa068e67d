#!/usr/bin/env python3
"""
Seed the default workflow definitions and demo users into MongoDB.

Usage:
    python scripts/seed_workflows.py            # workflows only
    python scripts/seed_workflows.py --users    # workflows and demo users
"""

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv
from motor.motor_asyncio import AsyncIOMotorClient

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
load_dotenv()

from services import docflow_config
from services.storage import MongoCollectionStore
from services.workflow_store import WorkflowStore, seed_default_workflows


DEMO_USERS = [
    {"id": "admin", "username": "admin", "email": "admin@docflow.edu", "role": "admin", "department": "admin"},
    {"id": "student1", "username": "student1", "email": "student1@docflow.edu", "role": "student"},
    {"id": "student2", "username": "student2", "email": "student2@docflow.edu", "role": "student"},
    {"id": "approver_admissions", "username": "approver_admissions", "email": "admissions@docflow.edu",
     "role": "approver", "department": "admissions"},
    {"id": "approver_finance", "username": "approver_finance", "email": "finance@docflow.edu",
     "role": "approver", "department": "finance"},
    {"id": "approver_registrar", "username": "approver_registrar", "email": "registrar@docflow.edu",
     "role": "approver", "department": "registrar"},
    {"id": "approver_scholarship", "username": "approver_scholarship", "email": "scholarship@docflow.edu",
     "role": "approver", "department": "scholarship"},
]

async def seed(with_users: bool = False):
    client = AsyncIOMotorClient(docflow_config.MONGO_URL)
    db = client[docflow_config.DB_NAME]

    created = await seed_default_workflows(WorkflowStore(MongoCollectionStore(db["workflows"])))
    print(f"Seeded {created} workflow(s)")
    if with_users:
        now = datetime.now(timezone.utc).isoformat()
        for user in DEMO_USERS:
            await db["users"].update_one(
                {"id": user["id"]},
                {"$set": {**user, "is_active": True, "updated_utc": now}},
                upsert=True,
            )
        print(f"Upserted {len(DEMO_USERS)} demo user(s)")
    client.close()
if __name__ == "__main__":
    asyncio.run(seed(with_users="--users" in sys.argv))
