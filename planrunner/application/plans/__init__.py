from .use_cases import (
    CancelResult,
    PlanExecutionUseCases,
    PlanSnapshot,
    validate_approval_request,
    validate_plan_request,
)

__all__ = [
    "CancelResult",
    "PlanExecutionUseCases",
    "PlanSnapshot",
    "validate_approval_request",
    "validate_plan_request",
]
