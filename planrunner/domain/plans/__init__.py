from .models import (
    CancellationToken,
    ExecutionMode,
    Plan,
    PlanStatus,
    PlanStep,
    StepOutcome,
    StepStatus,
)
from .errors import (
    InvalidTransitionError,
    MissingFieldsError,
    PlanAlreadyExecutingError,
    PlanException,
    PlanNotFoundError,
    PlanValidationError,
    ReservedPlanIdError,
    StreamClosedError,
    ThreadNotFoundError,
)

__all__ = [
    "CancellationToken",
    "ExecutionMode",
    "Plan",
    "PlanStatus",
    "PlanStep",
    "StepOutcome",
    "StepStatus",
    "InvalidTransitionError",
    "MissingFieldsError",
    "PlanAlreadyExecutingError",
    "PlanException",
    "PlanNotFoundError",
    "PlanValidationError",
    "ReservedPlanIdError",
    "StreamClosedError",
    "ThreadNotFoundError",
]
