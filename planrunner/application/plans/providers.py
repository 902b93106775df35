"""Shared providers for plan execution use cases."""

from __future__ import annotations

from typing import Optional
import structlog

from planrunner.application.plans.use_cases import PlanExecutionUseCases
from planrunner.core.config import settings
from planrunner.infrastructure.plans.builtin_handlers import register_builtin_handlers
from planrunner.infrastructure.plans.execution_registry import ExecutionRegistry
from planrunner.infrastructure.plans.plan_cancellation_adapter import (
    RedisPlanCancellationAdapter,
)
from planrunner.infrastructure.plans.plan_orchestrator import PlanOrchestrator
from planrunner.infrastructure.plans.step_dispatcher import StepDispatcher
from planrunner.infrastructure.plans.stores import create_plan_store


logger = structlog.get_logger(__name__)

_plan_use_cases: Optional[PlanExecutionUseCases] = None


def build_plan_use_cases(
    plan_store=None,
    dispatcher: Optional[StepDispatcher] = None,
    cross_instance_cancel: Optional[bool] = None,
) -> PlanExecutionUseCases:
    """Wire a registry, store, dispatcher and orchestrator together."""
    plan_store = plan_store or create_plan_store()
    if dispatcher is None:
        dispatcher = register_builtin_handlers(
            StepDispatcher(timeout_seconds=settings.STEP_TIMEOUT_SECONDS)
        )
    if cross_instance_cancel is None:
        cross_instance_cancel = settings.CROSS_INSTANCE_CANCEL
    cancellation_port = RedisPlanCancellationAdapter() if cross_instance_cancel else None

    return PlanExecutionUseCases(
        registry=ExecutionRegistry(),
        plan_store=plan_store,
        orchestrator=PlanOrchestrator(
            dispatcher=dispatcher,
            plan_store=plan_store,
            cancellation_port=cancellation_port,
        ),
        cancellation_port=cancellation_port,
    )


async def get_plan_use_cases() -> PlanExecutionUseCases:
    """Get the process-wide plan use cases."""
    global _plan_use_cases
    if _plan_use_cases is None:
        _plan_use_cases = build_plan_use_cases()
        logger.info(
            "Plan runtime initialized",
            store_backend=settings.PLAN_STORE_BACKEND,
            cross_instance_cancel=settings.CROSS_INSTANCE_CANCEL,
        )
    return _plan_use_cases


async def shutdown_plan_runtime() -> None:
    """Stop outstanding runs and clear the shared instance."""
    global _plan_use_cases
    if _plan_use_cases is not None:
        await _plan_use_cases.shutdown()
        close = getattr(_plan_use_cases.plan_store, "close", None)
        if close is not None:
            await close()
        logger.info("Plan runtime cleaned up")
    _plan_use_cases = None
