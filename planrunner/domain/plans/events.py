"""
Progress events emitted while a plan is approved and driven.

Every event serializes to a flat JSON object with a `type` discriminator:

    {"type": "step-progress", "stepId": "step-2", "stepIndex": 1, "status": "failed", "message": "boom"}

`execution-complete`, `error` and `step-mode-enabled` are terminal: the
producer closes the stream right after emitting one of them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional


@dataclass
class ProgressEvent:
    """Base class for progress stream events."""

    event_type: ClassVar[str] = ""
    terminal: ClassVar[bool] = False

    def payload(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.event_type, **self.payload()}


@dataclass
class PlanApproved(ProgressEvent):
    event_type: ClassVar[str] = "plan-approved"

    plan_id: str

    def payload(self) -> Dict[str, Any]:
        return {"planId": self.plan_id}


@dataclass
class ExecutionStarted(ProgressEvent):
    event_type: ClassVar[str] = "execution-started"

    plan_id: str
    total_steps: int

    def payload(self) -> Dict[str, Any]:
        return {"planId": self.plan_id, "totalSteps": self.total_steps}


@dataclass
class StepProgress(ProgressEvent):
    event_type: ClassVar[str] = "step-progress"

    step_id: str
    step_index: int
    status: str
    message: Optional[str] = None

    def payload(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "stepId": self.step_id,
            "stepIndex": self.step_index,
            "status": self.status,
        }
        if self.message is not None:
            data["message"] = self.message
        return data


@dataclass
class ExecutionComplete(ProgressEvent):
    event_type: ClassVar[str] = "execution-complete"
    terminal: ClassVar[bool] = True

    plan_id: str
    success: bool
    completed_steps: int
    total_steps: int
    errors: List[str] = field(default_factory=list)
    execution_time: int = 0  # milliseconds

    def payload(self) -> Dict[str, Any]:
        return {
            "planId": self.plan_id,
            "success": self.success,
            "completedSteps": self.completed_steps,
            "totalSteps": self.total_steps,
            "errors": list(self.errors),
            "executionTime": self.execution_time,
        }


@dataclass
class StepModeEnabled(ProgressEvent):
    event_type: ClassVar[str] = "step-mode-enabled"
    terminal: ClassVar[bool] = True

    plan_id: str
    next_step: Optional[int]

    def payload(self) -> Dict[str, Any]:
        return {"planId": self.plan_id, "nextStep": self.next_step}


@dataclass
class ExecutionError(ProgressEvent):
    event_type: ClassVar[str] = "error"
    terminal: ClassVar[bool] = True

    error: str

    def payload(self) -> Dict[str, Any]:
        return {"error": self.error}


EVENT_TYPES = {
    cls.event_type: cls
    for cls in (
        PlanApproved,
        ExecutionStarted,
        StepProgress,
        ExecutionComplete,
        StepModeEnabled,
        ExecutionError,
    )
}
