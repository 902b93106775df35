"""
Plan State Machine

Enforces valid state transitions for plans and their steps. Transitions are
applied to the in-memory plan document owned by the current run; the run
persists the document afterwards.

State Diagram:
                         ┌─────────────┐
                         │   PENDING   │  (set by the planner)
                         └──────┬──────┘
                                │ approval accepted
                                ▼
                         ┌─────────────┐
              ┌──────────│  APPROVED   │──────────┐
              │          └──────┬──────┘          │
              │                 │ run-all         │ step-by-step:
              │                 ▼                 │ last step / failure /
              │          ┌─────────────┐          │ cancellation
              │          │  EXECUTING  │          │
              │          └──────┬──────┘          │
              │                 │                 │
              ▼                 ▼                 ▼
       ┌───────────┐     ┌───────────┐     ┌───────────┐
       │ COMPLETED │     │  FAILED   │     │ CANCELLED │
       └───────────┘     └───────────┘     └───────────┘
"""

from datetime import datetime
from typing import Dict, List
import structlog

from planrunner.domain.plans.models import Plan, PlanStatus, PlanStep, StepStatus
from planrunner.domain.plans.errors import InvalidTransitionError


logger = structlog.get_logger(__name__)


VALID_TRANSITIONS: Dict[PlanStatus, List[PlanStatus]] = {
    PlanStatus.PENDING: [
        PlanStatus.APPROVED,   # Approval request accepted
    ],
    PlanStatus.APPROVED: [
        PlanStatus.EXECUTING,  # Run-all execution started
        PlanStatus.COMPLETED,  # Step-by-step: last step completed
        PlanStatus.FAILED,     # Step-by-step: a step failed
        PlanStatus.CANCELLED,  # Step-by-step: cancelled during a step
    ],
    PlanStatus.EXECUTING: [
        PlanStatus.COMPLETED,  # All steps finished successfully
        PlanStatus.FAILED,     # A step failed (fail-fast)
        PlanStatus.CANCELLED,  # Cancel observed at a step boundary
    ],
    # Terminal states
    PlanStatus.COMPLETED: [],
    PlanStatus.FAILED: [],
    PlanStatus.CANCELLED: [],
}

VALID_STEP_TRANSITIONS: Dict[StepStatus, List[StepStatus]] = {
    StepStatus.PENDING: [StepStatus.RUNNING, StepStatus.SKIPPED],
    StepStatus.RUNNING: [StepStatus.COMPLETED, StepStatus.FAILED],
    StepStatus.COMPLETED: [],
    StepStatus.FAILED: [],
    StepStatus.SKIPPED: [],
}


def is_terminal_status(status: PlanStatus) -> bool:
    """Check if a status is terminal (no transitions out)."""
    return status in (
        PlanStatus.COMPLETED,
        PlanStatus.FAILED,
        PlanStatus.CANCELLED,
    )


def can_transition(from_status: PlanStatus, to_status: PlanStatus) -> bool:
    """Check if a plan state transition is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, [])


def can_transition_step(from_status: StepStatus, to_status: StepStatus) -> bool:
    """Check if a step state transition is valid."""
    return to_status in VALID_STEP_TRANSITIONS.get(from_status, [])


def transition_plan(plan: Plan, new_status: PlanStatus) -> Plan:
    """
    Move a plan to a new status.

    Raises:
        InvalidTransitionError: If the transition is not allowed
    """
    current_status = plan.status
    if not can_transition(current_status, new_status):
        logger.warning(
            "Invalid plan transition attempted",
            plan_id=plan.id,
            current_status=current_status.value,
            target_status=new_status.value,
        )
        raise InvalidTransitionError(
            subject_id=plan.id,
            current_status=current_status.value,
            target_status=new_status.value,
        )

    plan.status = new_status
    plan.touch()
    if is_terminal_status(new_status):
        plan.completed_at = plan.updated_at

    logger.info(
        "Plan state transitioned",
        plan_id=plan.id,
        from_status=current_status.value,
        to_status=new_status.value,
    )
    return plan


def transition_step(plan: Plan, step: PlanStep, new_status: StepStatus) -> PlanStep:
    """
    Move a step to a new status, keeping at most one step running per plan.

    Raises:
        InvalidTransitionError: If the transition is not allowed
    """
    current_status = step.status
    if not can_transition_step(current_status, new_status):
        raise InvalidTransitionError(
            subject_id=step.id,
            current_status=current_status.value,
            target_status=new_status.value,
        )

    if new_status == StepStatus.RUNNING:
        already_running = [s.id for s in plan.running_steps() if s.id != step.id]
        if already_running:
            raise InvalidTransitionError(
                subject_id=step.id,
                current_status=current_status.value,
                target_status=new_status.value,
                message=f"Step {already_running[0]} is already running in plan {plan.id}",
            )
        step.started_at = datetime.utcnow()
    elif new_status in (StepStatus.COMPLETED, StepStatus.FAILED):
        step.completed_at = datetime.utcnow()

    step.status = new_status
    plan.touch()

    logger.debug(
        "Step state transitioned",
        plan_id=plan.id,
        step_id=step.id,
        from_status=current_status.value,
        to_status=new_status.value,
    )
    return step
