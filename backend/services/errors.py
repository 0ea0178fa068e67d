"""
DocFlow Hub - Workflow Errors

Every failure the workflow core raises on purpose. All of them are
recoverable by the caller and map to a 4xx response at the HTTP boundary.
"""

from typing import Dict, Optional


class WorkflowError(Exception):
    """Base exception for document workflow errors."""
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(WorkflowError):
    """Bad enum value, malformed input or malformed workflow definition."""
    status_code = 400


class AuthorizationError(WorkflowError):
    """Actor role or department does not allow the operation."""
    status_code = 403


class NotFoundError(WorkflowError):
    """Document or workflow id does not exist."""
    status_code = 404


class ConflictError(WorkflowError):
    """Assignment race lost, concurrent state change, or document already final."""
    status_code = 409


class ConfigurationError(WorkflowError):
    """Stored workflow configuration cannot be used (e.g. no order-1 stage)."""
    status_code = 422
