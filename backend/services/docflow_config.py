"""
DocFlow Hub - Runtime Configuration

All environment-driven settings for the workflow service, read once at import.
server.py loads .env before importing this module.

Feature Flags:
- RECORD_ASSIGNMENT_HISTORY: when True, assign-to-self appends an 'assigned'
  history entry. Off by default: assignment is not an audit action.
- NOTIFICATIONS_ENABLED: master switch for e-mail and realtime side effects.
- SEED_DEFAULT_WORKFLOWS: seed the default workflow definitions on startup
  when the workflows collection is empty.
"""

import os
from typing import List


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == "true"


def _csv(name: str, default: str) -> List[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# =============================================================================
# STORAGE
# =============================================================================

MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "docflow")

# "mongo" or "memory" (demo mode, nothing persisted)
STORAGE_BACKEND = os.environ.get("STORAGE_BACKEND", "mongo").lower()


# =============================================================================
# FEATURE FLAGS
# =============================================================================

RECORD_ASSIGNMENT_HISTORY = _flag("RECORD_ASSIGNMENT_HISTORY", "false")
NOTIFICATIONS_ENABLED = _flag("NOTIFICATIONS_ENABLED", "true")
SEED_DEFAULT_WORKFLOWS = _flag("SEED_DEFAULT_WORKFLOWS", "false")


# =============================================================================
# SUBMISSION LIMITS
# =============================================================================

MAX_UPLOAD_BYTES = int(os.environ.get("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))
ALLOWED_FILE_TYPES = _csv(
    "ALLOWED_FILE_TYPES",
    "application/pdf,image/jpeg,image/png,image/jpg",
)


# =============================================================================
# WORKFLOW DEFAULTS
# =============================================================================

DEFAULT_STAGE_TIME_LIMIT_HOURS = int(os.environ.get("DEFAULT_STAGE_TIME_LIMIT_HOURS", "48"))
