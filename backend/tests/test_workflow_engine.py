"""
Unit tests for the document workflow state machine.
Tests the pure transition logic in services/workflow_engine.py
"""
import pytest
from datetime import datetime, timedelta, timezone

from services.errors import ConfigurationError, ValidationError
from services.workflow_engine import (
    DepartmentStage,
    DocumentStatus,
    HistoryAction,
    HistoryEntry,
    TerminalKind,
    TerminalStage,
    WorkflowAction,
    WorkflowEngine,
    parse_stage,
)
from services.workflow_store import parse_workflow

from conftest import FILE_META


THREE_STAGES = parse_workflow({
    "name": "Admission Application",
    "document_type": "admission",
    "stages": [
        {"department": "admissions", "order": 1},
        {"department": "finance", "order": 2},
        {"department": "registrar", "order": 3},
    ],
})

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_doc(stage="admissions", status="pending", workflow_id=None):
    return {
        "id": "doc-1",
        "status": status,
        "current_stage": stage,
        "current_department": stage,
        "assigned_to": None,
        "workflow_id": workflow_id,
    }


class TestEnums:
    """Persisted string values must never change."""

    def test_status_values(self):
        assert WorkflowEngine.get_all_statuses() == [
            "pending", "in-review", "approved", "rejected", "returned", "forwarded"
        ]

    def test_document_type_values(self):
        assert WorkflowEngine.get_all_document_types() == [
            "admission", "scholarship", "transfer", "graduation", "other"
        ]

    def test_past_tense(self):
        assert WorkflowEngine.past_tense("approve") == HistoryAction.APPROVED
        assert WorkflowEngine.past_tense("reject") == HistoryAction.REJECTED
        assert WorkflowEngine.past_tense("return") == HistoryAction.RETURNED
        assert WorkflowEngine.past_tense("forward") == HistoryAction.FORWARDED

    def test_invalid_action(self):
        with pytest.raises(ValidationError):
            WorkflowEngine.parse_action("archive")


class TestStageRef:
    def test_department_stage(self):
        stage = parse_stage("finance")
        assert stage == DepartmentStage("finance")
        assert stage.value == "finance"
        assert not stage.is_terminal

    @pytest.mark.parametrize("marker", ["completed", "rejected", "returned"])
    def test_terminal_markers(self, marker):
        stage = parse_stage(marker)
        assert isinstance(stage, TerminalStage)
        assert stage.is_terminal
        assert stage.value == marker

    def test_empty_stage(self):
        assert parse_stage("") is None
        assert parse_stage(None) is None


class TestApproveTransitions:
    def test_approve_advances_to_next_stage(self):
        t = WorkflowEngine.resolve_transition(make_doc("admissions"), THREE_STAGES, "approve", "approver")
        assert t.status == DocumentStatus.PENDING
        assert t.stage == DepartmentStage("finance")
        assert t.department == "finance"
        assert t.advanced is True
        assert t.time_limit_hours == 48

    def test_approve_on_last_stage_completes(self):
        t = WorkflowEngine.resolve_transition(make_doc("registrar"), THREE_STAGES, "approve", "approver")
        assert t.status == DocumentStatus.APPROVED
        assert t.stage == TerminalStage(TerminalKind.COMPLETED)
        assert t.department is None
        assert t.patch == {"status": "approved", "current_stage": "completed", "current_department": None}

    def test_admin_approval_completes_from_any_stage(self):
        t = WorkflowEngine.resolve_transition(make_doc("admissions"), THREE_STAGES, "approve", "admin")
        assert t.status == DocumentStatus.APPROVED
        assert t.department is None

    def test_approve_without_workflow_completes(self):
        t = WorkflowEngine.resolve_transition(make_doc("admin"), None, "approve", "approver")
        assert t.status == DocumentStatus.APPROVED
        assert t.stage.value == "completed"

    def test_approve_in_admin_department_completes(self):
        doc = make_doc("admin", status="forwarded")
        t = WorkflowEngine.resolve_transition(doc, THREE_STAGES, "approve", "approver")
        assert t.status == DocumentStatus.APPROVED

    def test_approve_with_unknown_stage_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            WorkflowEngine.resolve_transition(make_doc("scholarship"), THREE_STAGES, "approve", "approver")


class TestPositionIndependentTransitions:
    @pytest.mark.parametrize("stage", ["admissions", "finance", "registrar"])
    def test_reject(self, stage):
        t = WorkflowEngine.resolve_transition(make_doc(stage), THREE_STAGES, "reject", "approver")
        assert t.patch == {"status": "rejected", "current_stage": "rejected", "current_department": None}
        assert t.history_action == HistoryAction.REJECTED

    @pytest.mark.parametrize("stage", ["admissions", "finance", "registrar"])
    def test_return(self, stage):
        t = WorkflowEngine.resolve_transition(make_doc(stage), THREE_STAGES, "return", "approver")
        assert t.patch == {"status": "returned", "current_stage": "returned", "current_department": None}

    @pytest.mark.parametrize("stage", ["admissions", "finance", "registrar"])
    def test_forward_always_goes_to_admin(self, stage):
        t = WorkflowEngine.resolve_transition(make_doc(stage), THREE_STAGES, WorkflowAction.FORWARD, "approver")
        assert t.patch == {"status": "forwarded", "current_stage": "admin", "current_department": "admin"}
        assert t.time_limit_hours is None

    def test_resolve_does_not_mutate_document(self):
        doc = make_doc("admissions")
        before = dict(doc)
        WorkflowEngine.resolve_transition(doc, THREE_STAGES, "approve", "approver")
        assert doc == before


class TestHistoryAndTimestamps:
    def test_submit_entry_has_no_actor(self):
        entry = HistoryEntry(stage="admissions", action=HistoryAction.SUBMITTED).to_dict()
        assert "actor_id" not in entry
        assert entry["action"] == "submitted"

    def test_action_entry_has_actor(self):
        entry = HistoryEntry("admissions", HistoryAction.APPROVED, actor_id="a1", comment="ok").to_dict()
        assert entry["actor_id"] == "a1"
        assert entry["comment"] == "ok"

    def test_monotonic_timestamp_never_goes_back(self):
        history = [{"timestamp": (NOW + timedelta(minutes=5)).isoformat()}]
        assert WorkflowEngine.monotonic_timestamp(history, NOW) == NOW + timedelta(minutes=5)
        assert WorkflowEngine.monotonic_timestamp(history, NOW + timedelta(hours=1)) == NOW + timedelta(hours=1)
        assert WorkflowEngine.monotonic_timestamp([], NOW) == NOW

    def test_due_date(self):
        assert WorkflowEngine.due_date(NOW, 24) == (NOW + timedelta(hours=24)).isoformat()
        assert WorkflowEngine.due_date(NOW, None) is None


class TestInitializeAndInvariants:
    def test_initialize_document(self):
        doc = WorkflowEngine.initialize_document(
            document_id="doc-9",
            student_id="student-1",
            document_type="transfer",
            title="Transfer request",
            description="",
            file_meta=FILE_META,
            department="admissions",
            workflow_id="wf-1",
            time_limit_hours=72,
            now=NOW,
        )
        assert doc["status"] == "pending"
        assert doc["current_stage"] == doc["current_department"] == "admissions"
        assert doc["assigned_to"] is None
        assert doc["history"][0]["action"] == "submitted"
        assert doc["history"][0]["stage"] == "admissions"
        assert doc["submission_date"] == doc["last_updated"] == NOW.isoformat()
        assert doc["due_date"] == (NOW + timedelta(hours=72)).isoformat()
        assert doc["file_name"] == "transcript.pdf"
        assert WorkflowEngine.check_invariants(doc).ok

    def test_detects_department_status_mismatch(self):
        doc = make_doc("completed", status="approved")
        doc["current_department"] = "registrar"
        doc["history"] = [{"action": "submitted", "stage": "admissions", "timestamp": NOW.isoformat()}]
        report = WorkflowEngine.check_invariants(doc)
        assert not report.ok
        assert "inconsistent" in report.violations[0]

    def test_detects_empty_and_unordered_history(self):
        doc = make_doc()
        doc["history"] = []
        assert "history is empty" in WorkflowEngine.check_invariants(doc).violations

        doc["history"] = [
            {"action": "submitted", "timestamp": NOW.isoformat()},
            {"action": "approved", "timestamp": (NOW - timedelta(seconds=1)).isoformat()},
        ]
        assert "history timestamps are not monotonic" in WorkflowEngine.check_invariants(doc).violations

    def test_build_history_entry(self):
        entry = WorkflowEngine.build_history_entry("finance", HistoryAction.FORWARDED, "a2", "", NOW)
        assert entry == {
            "stage": "finance",
            "action": "forwarded",
            "comment": "",
            "timestamp": NOW.isoformat(),
            "actor_id": "a2",
        }
