"""
Execution Registry

Maps plan identifiers to the cancellation token of the run currently
driving them on this process. An entry exists exactly while a run is live.

Plan identifiers come straight from request bodies, so every operation
validates them first and the backing dict is only ever accessed through
explicit membership checks.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Optional

import structlog

from planrunner.domain.plans.errors import (
    PlanAlreadyExecutingError,
    PlanValidationError,
    ReservedPlanIdError,
)
from planrunner.domain.plans.models import CancellationToken


logger = structlog.get_logger(__name__)


RESERVED_PLAN_IDS = frozenset({"__proto__", "constructor", "prototype"})


def validate_plan_id(plan_id: object) -> str:
    """
    Reject identifiers that are empty, not strings, or reserved names.

    Raises:
        PlanValidationError: If the identifier is missing or not a string
        ReservedPlanIdError: If the identifier is a reserved name
    """
    if not isinstance(plan_id, str) or not plan_id:
        raise PlanValidationError("planId must be a non-empty string")
    if plan_id in RESERVED_PLAN_IDS:
        raise ReservedPlanIdError(plan_id)
    return plan_id


class ExecutionRegistry:
    """
    Process-scoped registry of in-flight plan runs.

    Only the run that registered a token removes its entry; cancel requests
    flip the token and leave the entry for the run's own cleanup.
    """

    def __init__(self) -> None:
        self._tokens: Dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def register(self, plan_id: str) -> CancellationToken:
        """
        Create and register a fresh token for a new run.

        Raises:
            PlanAlreadyExecutingError: If a live run already holds the plan
        """
        validate_plan_id(plan_id)
        with self._lock:
            if plan_id in self._tokens:
                raise PlanAlreadyExecutingError(plan_id)
            token = CancellationToken(plan_id)
            self._tokens[plan_id] = token

        logger.debug("Registered plan run", plan_id=plan_id, token_id=token.id)
        return token

    def lookup(self, plan_id: str) -> Optional[CancellationToken]:
        validate_plan_id(plan_id)
        with self._lock:
            if plan_id in self._tokens:
                return self._tokens[plan_id]
            return None

    def cancel(self, plan_id: str) -> bool:
        """Flip the live token for a plan. True only if this call flipped it."""
        token = self.lookup(plan_id)
        if token is None:
            return False
        flipped = token.cancel()
        if flipped:
            logger.info("Cancellation requested", plan_id=plan_id, token_id=token.id)
        return flipped

    def unregister(self, plan_id: str, token: Optional[CancellationToken] = None) -> bool:
        """
        Remove a plan's entry.

        When a token is given, the entry is only removed if it still holds
        that exact token.
        """
        validate_plan_id(plan_id)
        with self._lock:
            if plan_id not in self._tokens:
                return False
            if token is not None and self._tokens[plan_id] is not token:
                return False
            del self._tokens[plan_id]

        logger.debug("Unregistered plan run", plan_id=plan_id)
        return True

    def is_executing(self, plan_id: str) -> bool:
        return self.lookup(plan_id) is not None

    def active_plan_ids(self) -> List[str]:
        with self._lock:
            return list(self._tokens.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
