from planrunner.core.config import settings
from planrunner.core.exceptions import ConfigurationError
from planrunner.domain.plans.ports import PlanStorePort

from .memory_plan_store import InMemoryPlanStore
from .redis_plan_store import RedisPlanStore


def create_plan_store(backend: str = None) -> PlanStorePort:
    """Build the plan store selected by PLAN_STORE_BACKEND."""
    backend = (backend or settings.PLAN_STORE_BACKEND).lower()
    if backend == "memory":
        return InMemoryPlanStore()
    if backend == "redis":
        return RedisPlanStore()
    raise ConfigurationError(f"Unknown plan store backend: {backend}")


__all__ = ["InMemoryPlanStore", "RedisPlanStore", "create_plan_store"]
