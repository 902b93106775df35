"""
StepDispatcher - resolves a step's action to a handler and invokes it.

Handlers are pluggable async callables registered by action name. Whatever a
handler returns is normalized into a StepOutcome:
- StepOutcome: used as-is
- dict: {"success": bool, "message": str, ...}; missing "success" means True
- anything else (including None): success, kept as the step result

A handler that raises is NOT caught here; the orchestrator records the fault
as a failed step with the exception message preserved.
"""

import asyncio
from typing import Any, Dict, Iterable, Optional

import structlog

from planrunner.domain.plans.errors import PlanException
from planrunner.domain.plans.models import Plan, PlanStep, StepOutcome
from planrunner.domain.plans.ports import StepDispatchPort, StepHandler

logger = structlog.get_logger(__name__)


class StepTimeoutError(PlanException):
    """Raised when a handler exceeds the configured step timeout."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Step timed out after {timeout_seconds:g}s")


def normalize_outcome(value: Any) -> StepOutcome:
    """Convert a handler return value into a StepOutcome."""
    if isinstance(value, StepOutcome):
        return value
    if isinstance(value, dict) and ("success" in value or "message" in value):
        success = bool(value.get("success", True))
        message = value.get("message") or value.get("error")
        result = value.get("result", value.get("data"))
        return StepOutcome(success=success, message=message, result=result)
    return StepOutcome(success=True, result=value)


class StepDispatcher(StepDispatchPort):
    """
    Registry of step handlers plus the single entry point for invoking them.
    """

    def __init__(
        self,
        handlers: Optional[Dict[str, StepHandler]] = None,
        timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            handlers: Initial action-name -> handler mapping
            timeout_seconds: Optional bound on each handler call
        """
        self._handlers: Dict[str, StepHandler] = dict(handlers or {})
        self._timeout_seconds = timeout_seconds

    def register(self, action: str, handler: StepHandler) -> None:
        if not action:
            raise ValueError("action name is required")
        if self.has_handler(action):
            logger.warning("Replacing step handler", action=action)
        self._handlers[action] = handler

    def has_handler(self, action: str) -> bool:
        return action in self._handlers

    @property
    def actions(self) -> Iterable[str]:
        return sorted(self._handlers)

    def resolve(self, step: PlanStep) -> Optional[StepHandler]:
        action = step.action_name
        if action in self._handlers:
            return self._handlers[action]
        return None

    async def dispatch(self, step: PlanStep, plan: Plan) -> StepOutcome:
        """
        Resolve and invoke the handler for a step.

        Returns:
            StepOutcome describing success or structured failure

        Raises:
            StepTimeoutError: If the handler exceeds the configured timeout
            Exception: Anything the handler itself raises
        """
        handler = self.resolve(step)
        if handler is None:
            logger.warning(
                "No handler registered for step",
                plan_id=plan.id,
                step_id=step.id,
                action=step.action_name,
            )
            return StepOutcome.failed(f"No handler registered for action: {step.action_name}")

        context = {
            "plan_id": plan.id,
            "goal": plan.goal,
            "step_index": plan.index_of(step.id),
            "total_steps": plan.total_steps,
            "metadata": plan.metadata,
        }

        logger.debug(
            "Dispatching step",
            plan_id=plan.id,
            step_id=step.id,
            action=step.action_name,
        )

        if self._timeout_seconds:
            try:
                value = await asyncio.wait_for(handler(step, context), timeout=self._timeout_seconds)
            except asyncio.TimeoutError:
                raise StepTimeoutError(self._timeout_seconds)
        else:
            value = await handler(step, context)

        return normalize_outcome(value)
