"""Test configuration and fixtures."""

from typing import Any, Dict, List, Optional

import pytest

from planrunner.domain.plans.events import ProgressEvent
from planrunner.domain.plans.models import Plan, PlanStatus, PlanStep, StepOutcome


@pytest.fixture(autouse=True)
def configure_structlog():
    """Configure structlog for testing."""
    import structlog

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class RecordingSink:
    """Progress sink that keeps every emitted event."""

    def __init__(self) -> None:
        self.events: List[ProgressEvent] = []

    def emit(self, event: ProgressEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> List[str]:
        return [event.event_type for event in self.events]

    def of_type(self, event_type: str) -> List[ProgressEvent]:
        return [event for event in self.events if event.event_type == event_type]


def build_plan(
    plan_id: str = "plan-1",
    actions: Optional[List[str]] = None,
    status: PlanStatus = PlanStatus.PENDING,
    params: Optional[Dict[str, Any]] = None,
) -> Plan:
    """Plan with one step per action, ids step-1..step-n."""
    actions = actions if actions is not None else ["ok", "ok", "ok"]
    return Plan(
        id=plan_id,
        goal="Test goal",
        status=status,
        steps=[
            PlanStep(
                id=f"step-{index + 1}",
                description=f"Step {index + 1}",
                action=action,
                params=dict(params or {}),
            )
            for index, action in enumerate(actions)
        ],
    )


async def ok_handler(step, context):
    return StepOutcome.succeeded(f"{step.id} done")


async def fail_handler(step, context):
    return {"success": False, "message": "boom"}


async def raising_handler(step, context):
    raise RuntimeError("handler exploded")


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_plan():
    return build_plan


@pytest.fixture
def step_handlers():
    """Handlers keyed by the action names used in test plans."""
    return {"ok": ok_handler, "fail": fail_handler, "raise": raising_handler}
