"""Domain ports for plan execution."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional, Protocol

from planrunner.domain.plans.events import ProgressEvent
from planrunner.domain.plans.models import Plan, PlanStatus, PlanStep, StepOutcome


class PlanStorePort(Protocol):
    """Port for the durable plan documents, grouped by parent thread.

    Writes are per-plan: saving one plan never rewrites its siblings.
    """

    async def create_thread(self, thread_id: str, plans: Optional[Iterable[Plan]] = None) -> None:
        ...

    async def thread_exists(self, thread_id: str) -> bool:
        ...

    async def get_plan(self, thread_id: str, plan_id: str) -> Optional[Plan]:
        ...

    async def list_plans(self, thread_id: str) -> Dict[str, Plan]:
        ...

    async def save_plan(self, thread_id: str, plan: Plan) -> None:
        ...

    async def update_plan_status(
        self,
        thread_id: str,
        plan_id: str,
        status: PlanStatus,
    ) -> Optional[Plan]:
        ...


class StepHandler(Protocol):
    """Callable that performs one step's domain action."""

    async def __call__(self, step: PlanStep, context: Dict[str, Any]) -> Any:
        ...


class StepDispatchPort(Protocol):
    """Port for resolving and invoking a step's handler."""

    async def dispatch(self, step: PlanStep, plan: Plan) -> StepOutcome:
        ...


class PlanCancellationPort(Protocol):
    """Port for cancellation flags shared across server instances."""

    async def is_cancelled(self, plan_id: str) -> bool:
        ...

    async def cancel(self, plan_id: str) -> None:
        ...

    async def clear(self, plan_id: str) -> None:
        ...


class ProgressSink(Protocol):
    """Where a run emits its progress events."""

    def emit(self, event: ProgressEvent) -> None:
        ...
