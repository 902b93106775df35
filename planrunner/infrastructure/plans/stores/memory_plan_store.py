"""
In-memory implementation of PlanStorePort.

Documents are deep-copied on the way in and out, so callers always receive a
fresh Plan and never share mutable state with the store. Used by the CLI,
by tests, and as the default backend for single-instance deployments.
"""

import asyncio
import copy
from typing import Any, Dict, Iterable, Optional

import structlog

from planrunner.domain.plans.models import Plan, PlanStatus
from planrunner.domain.plans.ports import PlanStorePort
from planrunner.infrastructure.plans.state_machine import is_terminal_status


logger = structlog.get_logger(__name__)


def _document(plan: Plan) -> Dict[str, Any]:
    return copy.deepcopy(plan.to_dict())


def _restore(document: Dict[str, Any]) -> Plan:
    return Plan.from_dict(copy.deepcopy(document))


class InMemoryPlanStore(PlanStorePort):
    """Thread documents held in a dict: thread_id -> {plan_id -> plan document}."""

    def __init__(self) -> None:
        self._threads: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def create_thread(self, thread_id: str, plans: Optional[Iterable[Plan]] = None) -> None:
        async with self._lock:
            documents = self._threads.setdefault(thread_id, {})
            for plan in plans or []:
                documents[plan.id] = _document(plan)

    async def thread_exists(self, thread_id: str) -> bool:
        return thread_id in self._threads

    async def get_plan(self, thread_id: str, plan_id: str) -> Optional[Plan]:
        if thread_id not in self._threads:
            return None
        documents = self._threads[thread_id]
        if plan_id not in documents:
            return None
        return _restore(documents[plan_id])

    async def list_plans(self, thread_id: str) -> Dict[str, Plan]:
        if thread_id not in self._threads:
            return {}
        return {
            plan_id: _restore(document)
            for plan_id, document in self._threads[thread_id].items()
        }

    async def save_plan(self, thread_id: str, plan: Plan) -> None:
        async with self._lock:
            self._threads.setdefault(thread_id, {})[plan.id] = _document(plan)
        logger.debug(
            "Plan saved",
            thread_id=thread_id,
            plan_id=plan.id,
            status=plan.status.value,
        )

    async def update_plan_status(
        self,
        thread_id: str,
        plan_id: str,
        status: PlanStatus,
    ) -> Optional[Plan]:
        async with self._lock:
            if thread_id not in self._threads:
                return None
            documents = self._threads[thread_id]
            if plan_id not in documents:
                return None

            plan = _restore(documents[plan_id])
            if is_terminal_status(plan.status):
                return plan

            plan.status = status
            plan.touch()
            if is_terminal_status(status):
                plan.completed_at = plan.updated_at
            documents[plan_id] = _document(plan)
            return plan
