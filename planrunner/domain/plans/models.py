"""
Plan Interface and Data Models

A Plan is the durable record of an approved multi-step task and its
execution state. It is stored inside a parent document (the thread it was
proposed in) and read back on every approval, step and cancel request.

Key concepts:
- Plan: the persistent document, source of truth for "which step is next"
- PlanStep: one ordered unit of work, interpreted by the step dispatcher
- CancellationToken: ephemeral flag shared between a run and cancel requests
- StepOutcome: what a step handler reports back to the orchestrator

Stored documents use camelCase keys so they stay readable by JSON clients:
{
    "id": "plan-123",
    "goal": "Create a launch checklist",
    "status": "pending",
    "mode": null,
    "steps": [
        {"id": "step-1", "description": "Draft tasks", "action": "createWorkItem",
         "params": {"name": "Launch"}, "status": "pending"}
    ],
    "summary": null
}
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import threading
import uuid


class PlanStatus(Enum):
    """Status of a plan"""
    PENDING = "pending"             # Proposed by the planner, awaiting approval
    APPROVED = "approved"           # Approved, not yet (or step-wise) executing
    EXECUTING = "executing"         # Steps are being driven by a run
    COMPLETED = "completed"         # Every step completed
    FAILED = "failed"               # A step failed, run stopped
    CANCELLED = "cancelled"         # Stopped between steps by a cancel request


class StepStatus(Enum):
    """Status of an individual step"""
    PENDING = "pending"             # Not yet started
    RUNNING = "running"             # Currently executing
    COMPLETED = "completed"         # Successfully completed
    FAILED = "failed"               # Failed with error
    SKIPPED = "skipped"             # Deliberately not run


class ExecutionMode(Enum):
    """How an approved plan is driven"""
    ALL = "all"                     # Run every step in one request
    STEP = "step"                   # Each step is triggered by its own request


# Steps in these states are never picked as "next"
FINISHED_STEP_STATUSES = (StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _format_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class PlanStep:
    """
    Single step in a plan.

    `action` names the handler the dispatcher resolves; plans produced
    without one fall back to the description.
    """
    id: str
    description: str
    action: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    status: StepStatus = StepStatus.PENDING
    result: Optional[Any] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        """Generate ID if not provided"""
        if not self.id:
            self.id = f"step_{str(uuid.uuid4())[:8]}"

    @property
    def action_name(self) -> str:
        return self.action or self.description

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED_STEP_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            "id": self.id,
            "description": self.description,
            "action": self.action,
            "params": self.params,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "startedAt": _format_dt(self.started_at),
            "completedAt": _format_dt(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PlanStep':
        """Create from dictionary"""
        return cls(
            id=data.get("id", ""),
            description=data.get("description", ""),
            action=data.get("action"),
            params=data.get("params") or {},
            status=StepStatus(data.get("status", "pending")),
            result=data.get("result"),
            error=data.get("error"),
            started_at=_parse_dt(data.get("startedAt")),
            completed_at=_parse_dt(data.get("completedAt")),
        )


@dataclass
class Plan:
    """
    The persistent plan document.

    Step order is dependency order: later steps may rely on the effects
    of earlier ones, so steps never run out of order or concurrently.
    """
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    goal: str = ""
    status: PlanStatus = PlanStatus.PENDING
    steps: List[PlanStep] = field(default_factory=list)
    mode: Optional[ExecutionMode] = None
    summary: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def completed_steps(self) -> int:
        return sum(1 for step in self.steps if step.status == StepStatus.COMPLETED)

    def next_step_index(self) -> Optional[int]:
        """Index of the first step not yet completed, failed or skipped."""
        for index, step in enumerate(self.steps):
            if not step.is_finished:
                return index
        return None

    def index_of(self, step_id: str) -> int:
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        return -1

    def running_steps(self) -> List[PlanStep]:
        return [step for step in self.steps if step.status == StepStatus.RUNNING]

    def touch(self) -> None:
        self.updated_at = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            "id": self.id,
            "goal": self.goal,
            "status": self.status.value,
            "steps": [step.to_dict() for step in self.steps],
            "mode": self.mode.value if self.mode else None,
            "summary": self.summary,
            "metadata": self.metadata,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "completedAt": _format_dt(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Plan':
        """Create from dictionary"""
        return cls(
            id=data["id"],
            goal=data.get("goal", ""),
            status=PlanStatus(data.get("status", "pending")),
            steps=[PlanStep.from_dict(s) for s in data.get("steps", [])],
            mode=ExecutionMode(data["mode"]) if data.get("mode") else None,
            summary=data.get("summary"),
            metadata=data.get("metadata") or {},
            created_at=_parse_dt(data.get("createdAt")) or datetime.utcnow(),
            updated_at=_parse_dt(data.get("updatedAt")) or datetime.utcnow(),
            completed_at=_parse_dt(data.get("completedAt")),
        )


@dataclass
class StepOutcome:
    """Result reported by a step handler."""
    success: bool
    message: Optional[str] = None
    result: Optional[Any] = None

    @classmethod
    def succeeded(cls, message: Optional[str] = None, result: Any = None) -> 'StepOutcome':
        return cls(success=True, message=message, result=result)

    @classmethod
    def failed(cls, message: str) -> 'StepOutcome':
        return cls(success=False, message=message)


class CancellationToken:
    """
    Shared flag used to stop a running plan between steps.

    The flag is monotonic: once set it stays set, and only the call that
    actually flips it reports True.
    """

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        self.id = str(uuid.uuid4())
        self._cancelled = False
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> bool:
        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True
            return True

    def __repr__(self) -> str:
        return f"CancellationToken(plan_id={self.plan_id!r}, cancelled={self._cancelled})"
