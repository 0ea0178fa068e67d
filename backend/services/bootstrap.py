"""
DocFlow Hub - Service Wiring

Builds the workflow core on top of a set of collection stores. Used by
server.py at startup and by the test suite with in-memory stores.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from services import docflow_config
from services.audit_trail import AuditTrail
from services.directory import UserDirectory
from services.document_service import DocumentWorkflowService
from services.email_service import EmailService
from services.notifications import NotificationDispatcher, RealtimeBroker
from services.routing import DepartmentRouter
from services.storage import DocumentStore
from services.workflow_engine import utc_now
from services.workflow_store import WorkflowStore


@dataclass
class WorkflowServices:
    stores: Dict[str, DocumentStore]
    workflow_store: WorkflowStore
    audit: AuditTrail
    router: DepartmentRouter
    directory: UserDirectory
    email_service: EmailService
    broker: RealtimeBroker
    dispatcher: NotificationDispatcher
    documents: DocumentWorkflowService


def build_services(
    stores: Dict[str, DocumentStore],
    email_service: Optional[EmailService] = None,
    notifications_enabled: Optional[bool] = None,
    record_assignment_history: Optional[bool] = None,
    clock=None,
) -> WorkflowServices:
    if notifications_enabled is None:
        notifications_enabled = docflow_config.NOTIFICATIONS_ENABLED

    workflow_store = WorkflowStore(stores["workflows"])
    audit = AuditTrail(stores["documents"], stores["audit_events"])
    clock = clock or utc_now
    router = DepartmentRouter(workflow_store, stores["documents"], audit, clock=clock)
    directory = UserDirectory(stores["users"])
    email_service = email_service or EmailService()
    broker = RealtimeBroker()
    dispatcher = NotificationDispatcher(email_service, broker, directory, enabled=notifications_enabled)

    documents = DocumentWorkflowService(
        stores["documents"], workflow_store, router, audit, dispatcher,
        clock=clock, record_assignment_history=record_assignment_history,
    )
    return WorkflowServices(
        stores=stores,
        workflow_store=workflow_store,
        audit=audit,
        router=router,
        directory=directory,
        email_service=email_service,
        broker=broker,
        dispatcher=dispatcher,
        documents=documents,
    )
