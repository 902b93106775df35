"""
PlanOrchestrator - drives an approved plan through its steps.

Steps run strictly one at a time, in plan order. The cancellation token is
checked at every step boundary and never mid-step: a running step always
runs to completion, and no further step starts once the token is set.

A failed step stops the run (fail-fast). Handler faults are recorded like
structured failures, with the exception message kept verbatim in `errors`.

Events emitted for a run-all execution, in order:
    execution-started -> step-progress* -> execution-complete
"""

import time
from typing import Callable, List, Optional

import structlog

from planrunner.domain.plans.events import (
    ExecutionComplete,
    ExecutionStarted,
    ProgressEvent,
    StepModeEnabled,
    StepProgress,
)
from planrunner.domain.plans.models import (
    CancellationToken,
    Plan,
    PlanStatus,
    PlanStep,
    StepOutcome,
    StepStatus,
)
from planrunner.domain.plans.ports import (
    PlanCancellationPort,
    PlanStorePort,
    ProgressSink,
    StepDispatchPort,
)
from planrunner.infrastructure.plans.state_machine import transition_plan, transition_step

logger = structlog.get_logger(__name__)


def summarize(plan: Plan, failure: Optional[str] = None) -> str:
    """Human-readable outcome for a plan in a terminal state."""
    completed = plan.completed_steps
    if plan.status == PlanStatus.COMPLETED:
        return f"Successfully completed {completed} steps"
    if plan.status == PlanStatus.CANCELLED:
        return f"Cancelled after {completed} of {plan.total_steps} steps"
    summary = f"Failed after {completed} steps"
    if failure:
        summary += f": {failure}"
    return summary


class PlanOrchestrator:
    """
    State machine driver for a single plan run.

    The orchestrator owns no per-run state; one instance serves every run
    on the process.
    """

    def __init__(
        self,
        dispatcher: StepDispatchPort,
        plan_store: PlanStorePort,
        cancellation_port: Optional[PlanCancellationPort] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the orchestrator.

        Args:
            dispatcher: Resolves and invokes step handlers
            plan_store: Durable store the final plan is written to
            cancellation_port: Optional cross-instance cancellation flags
            clock: Monotonic clock in seconds (overridable in tests)
        """
        self._dispatcher = dispatcher
        self._plan_store = plan_store
        self._cancellation_port = cancellation_port
        self._clock = clock

    async def run_all(
        self,
        thread_id: str,
        plan: Plan,
        token: CancellationToken,
        sink: ProgressSink,
    ) -> ExecutionComplete:
        """
        Execute every remaining step of an approved plan.

        The plan must be in APPROVED status. Returns the execution-complete
        event after it has been emitted and the final plan persisted.
        """
        log = logger.bind(plan_id=plan.id, thread_id=thread_id)
        started = self._clock()

        transition_plan(plan, PlanStatus.EXECUTING)
        await self._plan_store.save_plan(thread_id, plan)
        sink.emit(ExecutionStarted(plan_id=plan.id, total_steps=plan.total_steps))
        log.info("Plan execution started", total_steps=plan.total_steps)

        errors: List[str] = []
        failed = False
        cancelled = False

        for index, step in enumerate(plan.steps):
            if step.is_finished:
                continue
            if await self._cancel_requested(plan.id, token):
                cancelled = True
                log.warning("Plan cancelled at step boundary", next_step=index)
                break
            if not await self._run_step(plan, step, index, sink, errors):
                failed = True
                break

        if failed:
            final_status = PlanStatus.FAILED
        elif cancelled:
            final_status = PlanStatus.CANCELLED
        else:
            final_status = PlanStatus.COMPLETED

        return await self._finish(thread_id, plan, final_status, errors, started, sink)

    async def run_next_step(
        self,
        thread_id: str,
        plan: Plan,
        token: CancellationToken,
        sink: ProgressSink,
    ) -> ProgressEvent:
        """
        Execute exactly one step of a plan approved in step-by-step mode.

        Returns the terminal event: step-mode-enabled when steps remain,
        execution-complete once the plan reaches a terminal state.
        """
        log = logger.bind(plan_id=plan.id, thread_id=thread_id)
        started = self._clock()
        errors: List[str] = []

        index = plan.next_step_index()
        if index is None:
            return await self._finish(thread_id, plan, PlanStatus.COMPLETED, errors, started, sink)

        if await self._cancel_requested(plan.id, token):
            log.warning("Plan cancelled before step", next_step=index)
            return await self._finish(thread_id, plan, PlanStatus.CANCELLED, errors, started, sink)

        if not await self._run_step(plan, plan.steps[index], index, sink, errors):
            return await self._finish(thread_id, plan, PlanStatus.FAILED, errors, started, sink)

        if token.cancelled:
            return await self._finish(thread_id, plan, PlanStatus.CANCELLED, errors, started, sink)

        next_index = plan.next_step_index()
        if next_index is None:
            return await self._finish(thread_id, plan, PlanStatus.COMPLETED, errors, started, sink)

        plan.touch()
        event = StepModeEnabled(plan_id=plan.id, next_step=next_index)
        await self._plan_store.save_plan(thread_id, plan)
        sink.emit(event)
        log.info("Step completed, awaiting next trigger", next_step=next_index)
        return event

    async def _run_step(
        self,
        plan: Plan,
        step: PlanStep,
        index: int,
        sink: ProgressSink,
        errors: List[str],
    ) -> bool:
        """Run one step and emit its progress. Returns True on success."""
        log = logger.bind(plan_id=plan.id, step_id=step.id, step_index=index)
        transition_step(plan, step, StepStatus.RUNNING)
        log.info("Step started", action=step.action_name)

        try:
            outcome = await self._dispatcher.dispatch(step, plan)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            log.warning("Step handler raised", error=message, exc_info=True)
            outcome = StepOutcome.failed(message)

        if outcome.success:
            step.result = outcome.result
            transition_step(plan, step, StepStatus.COMPLETED)
            log.info("Step completed")
        else:
            step.error = outcome.message or f"Step {step.id} failed"
            transition_step(plan, step, StepStatus.FAILED)
            errors.append(step.error)
            log.warning("Step failed", error=step.error)

        sink.emit(StepProgress(
            step_id=step.id,
            step_index=index,
            status=step.status.value,
            message=outcome.message,
        ))
        return outcome.success

    async def _cancel_requested(self, plan_id: str, token: CancellationToken) -> bool:
        if token.cancelled:
            return True
        if self._cancellation_port and await self._cancellation_port.is_cancelled(plan_id):
            token.cancel()
            return True
        return False

    async def _finish(
        self,
        thread_id: str,
        plan: Plan,
        final_status: PlanStatus,
        errors: List[str],
        started: float,
        sink: ProgressSink,
    ) -> ExecutionComplete:
        transition_plan(plan, final_status)
        plan.summary = summarize(plan, errors[-1] if errors else None)

        event = ExecutionComplete(
            plan_id=plan.id,
            success=final_status == PlanStatus.COMPLETED,
            completed_steps=plan.completed_steps,
            total_steps=plan.total_steps,
            errors=errors,
            execution_time=int((self._clock() - started) * 1000),
        )
        sink.emit(event)

        await self._plan_store.save_plan(thread_id, plan)
        logger.info(
            "Plan execution finished",
            plan_id=plan.id,
            thread_id=thread_id,
            status=final_status.value,
            completed_steps=event.completed_steps,
            total_steps=event.total_steps,
            execution_time_ms=event.execution_time,
        )
        return event
