"""Application use cases for approving, stepping and cancelling plans."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set, Tuple

import structlog

from planrunner.domain.plans.errors import (
    InvalidTransitionError,
    MissingFieldsError,
    PlanNotFoundError,
    PlanValidationError,
    ThreadNotFoundError,
)
from planrunner.domain.plans.events import ExecutionError, PlanApproved, StepModeEnabled
from planrunner.domain.plans.models import (
    CancellationToken,
    ExecutionMode,
    Plan,
    PlanStatus,
)
from planrunner.domain.plans.ports import PlanCancellationPort, PlanStorePort
from planrunner.infrastructure.plans.execution_registry import (
    ExecutionRegistry,
    validate_plan_id,
)
from planrunner.infrastructure.plans.plan_orchestrator import PlanOrchestrator
from planrunner.infrastructure.plans.progress_stream import ProgressStream
from planrunner.infrastructure.plans.state_machine import transition_plan


logger = structlog.get_logger(__name__)


CANCEL_ACCEPTED_MESSAGE = "Plan execution cancelled. Current step will complete before stopping."
CANCEL_NOT_FOUND_MESSAGE = "Plan is not currently executing or has already completed."
INTERRUPTED_MESSAGE = "Plan run interrupted by server shutdown"


def validate_approval_request(
    plan_id: Optional[str],
    mode: Optional[str],
    thread_id: Optional[str],
) -> Tuple[str, ExecutionMode, str]:
    """
    Check an approval request before anything else happens.

    Raises:
        MissingFieldsError: If any field is absent or empty
        PlanValidationError: If mode is unknown or planId is invalid
    """
    if not plan_id or not mode or not thread_id:
        raise MissingFieldsError(["planId", "mode", "threadId"])
    validate_plan_id(plan_id)
    try:
        execution_mode = ExecutionMode(mode)
    except ValueError:
        raise PlanValidationError(f"Invalid mode: {mode}. Expected 'all' or 'step'")
    return plan_id, execution_mode, thread_id


def validate_plan_request(
    plan_id: Optional[str],
    thread_id: Optional[str],
) -> Tuple[str, str]:
    """Validation shared by cancel and step requests."""
    if not plan_id or not thread_id:
        raise MissingFieldsError(["planId", "threadId"])
    validate_plan_id(plan_id)
    return plan_id, thread_id


@dataclass
class CancelResult:
    """Outcome of a cancel request. Not finding a live run is not an error."""

    success: bool
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message}


@dataclass
class PlanSnapshot:
    """Stored plan plus whether this process is currently driving it."""

    plan: Plan
    executing: bool


@dataclass
class PlanExecutionUseCases:
    """Application-layer orchestration for plan runs.

    Every request is validated and resolved against the plan store before a
    registry entry is created. Once a stream is returned, all further
    outcomes are reported through it; the run itself is a detached task
    that keeps going if the consumer goes away.
    """

    registry: ExecutionRegistry
    plan_store: PlanStorePort
    orchestrator: PlanOrchestrator
    cancellation_port: Optional[PlanCancellationPort] = None
    _runs: Set[asyncio.Task] = field(default_factory=set, init=False, repr=False)

    @property
    def active_runs(self) -> int:
        return len(self._runs)

    async def approve_plan(
        self,
        plan_id: Optional[str],
        mode: Optional[str],
        thread_id: Optional[str],
        user_id: str,
    ) -> ProgressStream:
        plan_id, execution_mode, thread_id = validate_approval_request(plan_id, mode, thread_id)
        plan = await self._load_plan(thread_id, plan_id)

        if plan.status != PlanStatus.PENDING:
            raise InvalidTransitionError(
                subject_id=plan.id,
                current_status=plan.status.value,
                target_status=PlanStatus.APPROVED.value,
                message=f"Plan is {plan.status.value}, only pending plans can be approved",
            )

        token = self.registry.register(plan_id)
        stream = ProgressStream(plan_id)
        logger.info(
            "Plan approved",
            plan_id=plan_id,
            thread_id=thread_id,
            mode=execution_mode.value,
            user_id=user_id,
        )
        self._spawn(self._approval_run(thread_id, plan, execution_mode, token, stream))
        return stream

    async def run_next_step(
        self,
        plan_id: Optional[str],
        thread_id: Optional[str],
        user_id: str,
    ) -> ProgressStream:
        plan_id, thread_id = validate_plan_request(plan_id, thread_id)
        plan = await self._load_plan(thread_id, plan_id)

        if plan.status != PlanStatus.APPROVED or plan.mode != ExecutionMode.STEP:
            raise InvalidTransitionError(
                subject_id=plan.id,
                current_status=plan.status.value,
                target_status=PlanStatus.EXECUTING.value,
                message="Only plans approved in step mode can run single steps",
            )

        token = self.registry.register(plan_id)
        stream = ProgressStream(plan_id)
        logger.info("Step requested", plan_id=plan_id, thread_id=thread_id, user_id=user_id)
        self._spawn(self._step_run(thread_id, plan, token, stream))
        return stream

    async def cancel_plan(
        self,
        plan_id: Optional[str],
        thread_id: Optional[str],
        user_id: str,
    ) -> CancelResult:
        plan_id, thread_id = validate_plan_request(plan_id, thread_id)

        if not self.registry.cancel(plan_id):
            if not await self._relay_cancel(thread_id, plan_id):
                logger.info("Cancel ignored, no live run", plan_id=plan_id, user_id=user_id)
                return CancelResult(success=False, message=CANCEL_NOT_FOUND_MESSAGE)

        try:
            await self.plan_store.update_plan_status(thread_id, plan_id, PlanStatus.CANCELLED)
        except Exception as exc:
            # The run persists its own final state; this write is best effort
            logger.warning(
                "Failed to persist cancelled status",
                plan_id=plan_id,
                thread_id=thread_id,
                error=str(exc),
            )

        logger.info("Plan cancellation accepted", plan_id=plan_id, user_id=user_id)
        return CancelResult(success=True, message=CANCEL_ACCEPTED_MESSAGE)

    async def get_plan(self, plan_id: Optional[str], thread_id: Optional[str]) -> PlanSnapshot:
        plan_id, thread_id = validate_plan_request(plan_id, thread_id)
        plan = await self._load_plan(thread_id, plan_id)
        return PlanSnapshot(plan=plan, executing=self.registry.is_executing(plan_id))

    async def wait_idle(self) -> None:
        """Wait for every detached run to finish."""
        while self._runs:
            await asyncio.gather(*list(self._runs), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding runs and wait for their cleanup."""
        for task in list(self._runs):
            task.cancel()
        await self.wait_idle()

    # Internal helpers

    async def _load_plan(self, thread_id: str, plan_id: str) -> Plan:
        if not await self.plan_store.thread_exists(thread_id):
            raise ThreadNotFoundError("Thread not found")
        plan = await self.plan_store.get_plan(thread_id, plan_id)
        if plan is None:
            raise PlanNotFoundError("Plan not found")
        return plan

    async def _relay_cancel(self, thread_id: str, plan_id: str) -> bool:
        """Flag a plan that is executing on another instance, if enabled."""
        if self.cancellation_port is None:
            return False
        plan = await self.plan_store.get_plan(thread_id, plan_id)
        if plan is None or plan.status != PlanStatus.EXECUTING:
            return False
        await self.cancellation_port.cancel(plan_id)
        logger.info("Cancellation relayed to owning instance", plan_id=plan_id)
        return True

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    async def _approval_run(
        self,
        thread_id: str,
        plan: Plan,
        mode: ExecutionMode,
        token: CancellationToken,
        stream: ProgressStream,
    ) -> None:
        try:
            transition_plan(plan, PlanStatus.APPROVED)
            plan.mode = mode
            stream.emit(PlanApproved(plan_id=plan.id))

            if mode == ExecutionMode.ALL:
                await self.orchestrator.run_all(thread_id, plan, token, stream)
            elif plan.next_step_index() is None:
                # Nothing left to trigger, finish the plan straight away
                await self.orchestrator.run_next_step(thread_id, plan, token, stream)
            else:
                await self.plan_store.save_plan(thread_id, plan)
                stream.emit(StepModeEnabled(plan_id=plan.id, next_step=plan.next_step_index()))
        except asyncio.CancelledError:
            stream.emit(ExecutionError(error=INTERRUPTED_MESSAGE))
            await self._abandon(thread_id, plan.id, PlanStatus.CANCELLED)
            raise
        except Exception as exc:
            logger.error("Plan run failed", plan_id=plan.id, thread_id=thread_id, exc_info=True)
            stream.emit(ExecutionError(error=str(exc) or "Unknown error"))
            await self._abandon(thread_id, plan.id, PlanStatus.FAILED)
        finally:
            await self._cleanup(plan.id, token, stream)

    async def _step_run(
        self,
        thread_id: str,
        plan: Plan,
        token: CancellationToken,
        stream: ProgressStream,
    ) -> None:
        try:
            await self.orchestrator.run_next_step(thread_id, plan, token, stream)
        except asyncio.CancelledError:
            stream.emit(ExecutionError(error=INTERRUPTED_MESSAGE))
            await self._abandon(thread_id, plan.id, PlanStatus.CANCELLED)
            raise
        except Exception as exc:
            logger.error("Plan step failed", plan_id=plan.id, thread_id=thread_id, exc_info=True)
            stream.emit(ExecutionError(error=str(exc) or "Unknown error"))
            await self._abandon(thread_id, plan.id, PlanStatus.FAILED)
        finally:
            await self._cleanup(plan.id, token, stream)

    async def _abandon(self, thread_id: str, plan_id: str, status: PlanStatus) -> None:
        """Move a plan left `executing` by an aborted run to a terminal status."""
        try:
            stored = await self.plan_store.get_plan(thread_id, plan_id)
            if stored is None or stored.status != PlanStatus.EXECUTING:
                return
            await self.plan_store.update_plan_status(thread_id, plan_id, status)
            logger.warning("Aborted run marked terminal", plan_id=plan_id, status=status.value)
        except Exception as exc:
            logger.warning(
                "Failed to persist aborted run status",
                plan_id=plan_id,
                thread_id=thread_id,
                error=str(exc),
            )

    async def _cleanup(self, plan_id: str, token: CancellationToken, stream: ProgressStream) -> None:
        self.registry.unregister(plan_id, token)
        stream.close()
        if self.cancellation_port is not None:
            await self.cancellation_port.clear(plan_id)
        logger.debug("Plan run closed", plan_id=plan_id, events=stream.emitted_count)
