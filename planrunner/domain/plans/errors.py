"""Domain-level plan errors."""

from __future__ import annotations

from typing import Iterable, Optional

from planrunner.core.exceptions import PlanRunnerException, ValidationError


class PlanException(PlanRunnerException):
    """Base exception for plan operations"""
    pass


class PlanValidationError(PlanException, ValidationError):
    """Raised when a request or plan identifier is invalid"""
    pass


class ReservedPlanIdError(PlanValidationError):
    """Raised when a plan identifier collides with a reserved name"""

    def __init__(self, plan_id: str) -> None:
        self.plan_id = plan_id
        super().__init__("Invalid planId")


class MissingFieldsError(PlanValidationError):
    """Raised when required request fields are absent"""

    def __init__(self, fields: Iterable[str]) -> None:
        self.fields = list(fields)
        super().__init__(f"Missing required fields: {', '.join(self.fields)}")


class ThreadNotFoundError(PlanException):
    """Raised when the parent document does not exist"""
    pass


class PlanNotFoundError(PlanException):
    """Raised when the plan is missing from its parent document"""
    pass


class PlanAlreadyExecutingError(PlanException):
    """Raised when a second run is requested for a plan with a live run"""

    def __init__(self, plan_id: str) -> None:
        self.plan_id = plan_id
        super().__init__(f"Plan {plan_id} is already executing")


class InvalidTransitionError(PlanException):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        subject_id: str,
        current_status: str,
        target_status: str,
        message: Optional[str] = None,
    ) -> None:
        self.subject_id = subject_id
        self.current_status = current_status
        self.target_status = target_status
        self.message = message or (
            f"Invalid transition from {current_status} to {target_status}"
        )
        super().__init__(self.message)


class StreamClosedError(PlanException):
    """Raised when emitting into a progress stream that was already closed"""
    pass
