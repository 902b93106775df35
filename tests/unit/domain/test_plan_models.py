"""
Unit tests for plan domain models and progress events.
"""

from datetime import datetime

from planrunner.domain.plans.events import (
    EVENT_TYPES,
    ExecutionComplete,
    ExecutionError,
    ExecutionStarted,
    PlanApproved,
    StepModeEnabled,
    StepProgress,
)
from planrunner.domain.plans.models import (
    CancellationToken,
    ExecutionMode,
    Plan,
    PlanStatus,
    PlanStep,
    StepStatus,
)


class TestPlanStep:

    def test_action_name_falls_back_to_description(self):
        step = PlanStep(id="s1", description="createWorkItem")
        assert step.action_name == "createWorkItem"

        step.action = "noop"
        assert step.action_name == "noop"

    def test_generates_id_when_missing(self):
        step = PlanStep(id="", description="Something")
        assert step.id.startswith("step_")

    def test_finished_statuses(self):
        step = PlanStep(id="s1", description="x")
        assert not step.is_finished
        for status in (StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED):
            step.status = status
            assert step.is_finished
        step.status = StepStatus.RUNNING
        assert not step.is_finished


class TestPlan:

    def test_next_step_index_skips_finished_steps(self, make_plan):
        plan = make_plan(actions=["a", "b", "c"])
        assert plan.next_step_index() == 0

        plan.steps[0].status = StepStatus.COMPLETED
        plan.steps[1].status = StepStatus.SKIPPED
        assert plan.next_step_index() == 2

        plan.steps[2].status = StepStatus.COMPLETED
        assert plan.next_step_index() is None

    def test_completed_steps_counts_only_completed(self, make_plan):
        plan = make_plan(actions=["a", "b", "c"])
        plan.steps[0].status = StepStatus.COMPLETED
        plan.steps[1].status = StepStatus.FAILED
        assert plan.completed_steps == 1
        assert plan.total_steps == 3

    def test_step_lookup(self, make_plan):
        plan = make_plan(actions=["a", "b"])
        assert plan.index_of("step-2") == 1
        assert plan.index_of("missing") == -1

    def test_document_uses_camel_case_keys(self, make_plan):
        plan = make_plan(actions=["a"])
        plan.steps[0].started_at = datetime(2024, 1, 1, 12, 0, 0)
        data = plan.to_dict()

        assert data["status"] == "pending"
        assert data["mode"] is None
        assert "createdAt" in data and "completedAt" in data
        assert data["steps"][0]["startedAt"] == "2024-01-01T12:00:00"

    def test_from_dict_restores_document(self, make_plan):
        plan = make_plan(actions=["a", "b"])
        plan.status = PlanStatus.APPROVED
        plan.mode = ExecutionMode.STEP
        plan.steps[0].status = StepStatus.COMPLETED
        plan.steps[0].result = {"id": 7}

        restored = Plan.from_dict(plan.to_dict())

        assert restored.id == plan.id
        assert restored.status == PlanStatus.APPROVED
        assert restored.mode == ExecutionMode.STEP
        assert restored.steps[0].status == StepStatus.COMPLETED
        assert restored.steps[0].result == {"id": 7}
        assert restored.next_step_index() == 1

    def test_from_dict_defaults(self):
        plan = Plan.from_dict({"id": "p", "steps": [{"id": "s", "description": "d"}]})
        assert plan.status == PlanStatus.PENDING
        assert plan.mode is None
        assert plan.steps[0].status == StepStatus.PENDING
        assert plan.steps[0].params == {}


class TestCancellationToken:

    def test_only_first_cancel_reports_flip(self):
        token = CancellationToken("plan-1")
        assert not token.cancelled
        assert token.cancel() is True
        assert token.cancel() is False
        assert token.cancelled

    def test_tokens_have_distinct_ids(self):
        assert CancellationToken("p").id != CancellationToken("p").id


class TestProgressEvents:

    def test_every_event_carries_its_type(self):
        events = [
            PlanApproved(plan_id="p"),
            ExecutionStarted(plan_id="p", total_steps=3),
            StepProgress(step_id="s", step_index=0, status="completed"),
            ExecutionComplete(plan_id="p", success=True, completed_steps=3, total_steps=3),
            StepModeEnabled(plan_id="p", next_step=1),
            ExecutionError(error="x"),
        ]
        for event in events:
            assert event.to_dict()["type"] == event.event_type
            assert EVENT_TYPES[event.event_type] is type(event)

    def test_terminal_events(self):
        assert ExecutionComplete.terminal
        assert StepModeEnabled.terminal
        assert ExecutionError.terminal
        assert not StepProgress.terminal
        assert not PlanApproved.terminal

    def test_step_progress_omits_missing_message(self):
        data = StepProgress(step_id="s", step_index=1, status="completed").to_dict()
        assert data == {"type": "step-progress", "stepId": "s", "stepIndex": 1, "status": "completed"}

        data = StepProgress(step_id="s", step_index=1, status="failed", message="boom").to_dict()
        assert data["message"] == "boom"

    def test_execution_complete_payload(self):
        event = ExecutionComplete(
            plan_id="p",
            success=False,
            completed_steps=1,
            total_steps=3,
            errors=["boom"],
            execution_time=42,
        )
        assert event.to_dict() == {
            "type": "execution-complete",
            "planId": "p",
            "success": False,
            "completedSteps": 1,
            "totalSteps": 3,
            "errors": ["boom"],
            "executionTime": 42,
        }

    def test_step_mode_enabled_allows_no_next_step(self):
        assert StepModeEnabled(plan_id="p", next_step=None).to_dict()["nextStep"] is None
