"""
DocFlow Hub - Routes Package

Modular API routers for the document workflow service.
"""

from .documents import router as documents_router, set_dependencies as set_documents_deps
from .workflows import router as workflows_router, set_dependencies as set_workflows_deps

__all__ = [
    'documents_router', 'set_documents_deps',
    'workflows_router', 'set_workflows_deps',
]
