"""
Unit tests for StepDispatcher and the built-in step handlers.
"""

import asyncio

import httpx
import pytest
from unittest.mock import AsyncMock

from planrunner.core.exceptions import PlanRunnerException
from planrunner.domain.plans.models import PlanStep, StepOutcome
from planrunner.infrastructure.plans import builtin_handlers
from planrunner.infrastructure.plans.builtin_handlers import (
    BUILTIN_HANDLERS,
    delay_handler,
    http_request_handler,
    noop_handler,
    register_builtin_handlers,
)
from planrunner.infrastructure.plans.step_dispatcher import (
    StepDispatcher,
    StepTimeoutError,
    normalize_outcome,
)


class TestNormalizeOutcome:

    def test_step_outcome_passes_through(self):
        outcome = StepOutcome.failed("nope")
        assert normalize_outcome(outcome) is outcome

    def test_dict_with_success_flag(self):
        outcome = normalize_outcome({"success": False, "error": "bad input"})
        assert not outcome.success
        assert outcome.message == "bad input"

    def test_dict_without_success_defaults_to_success(self):
        outcome = normalize_outcome({"message": "created", "data": {"id": 1}})
        assert outcome.success
        assert outcome.message == "created"
        assert outcome.result == {"id": 1}

    @pytest.mark.parametrize("value", [None, "text", 3, {"id": 1}])
    def test_other_values_are_success(self, value):
        outcome = normalize_outcome(value)
        assert outcome.success
        assert outcome.result == value


class TestStepDispatcher:

    @pytest.mark.asyncio
    async def test_dispatch_passes_step_and_context(self, make_plan):
        handler = AsyncMock(return_value=StepOutcome.succeeded("done"))
        dispatcher = StepDispatcher({"ok": handler})
        plan = make_plan(actions=["ok", "ok"])

        outcome = await dispatcher.dispatch(plan.steps[1], plan)

        assert outcome.success
        step, context = handler.call_args.args
        assert step is plan.steps[1]
        assert context["plan_id"] == plan.id
        assert context["step_index"] == 1
        assert context["total_steps"] == 2

    @pytest.mark.asyncio
    async def test_unknown_action_is_failed_outcome(self, make_plan):
        dispatcher = StepDispatcher()
        plan = make_plan(actions=["mystery"])

        outcome = await dispatcher.dispatch(plan.steps[0], plan)

        assert not outcome.success
        assert outcome.message == "No handler registered for action: mystery"

    @pytest.mark.asyncio
    async def test_description_used_when_action_missing(self, make_plan):
        handler = AsyncMock(return_value=None)
        dispatcher = StepDispatcher({"createWorkItem": handler})
        plan = make_plan(actions=["x"])
        plan.steps[0].action = None
        plan.steps[0].description = "createWorkItem"

        outcome = await dispatcher.dispatch(plan.steps[0], plan)

        assert outcome.success
        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_handler_exception_propagates(self, make_plan, step_handlers):
        dispatcher = StepDispatcher(step_handlers)
        plan = make_plan(actions=["raise"])

        with pytest.raises(RuntimeError, match="handler exploded"):
            await dispatcher.dispatch(plan.steps[0], plan)

    @pytest.mark.asyncio
    async def test_timeout_raises_step_timeout(self, make_plan):
        async def slow(step, context):
            await asyncio.sleep(5)

        dispatcher = StepDispatcher({"slow": slow}, timeout_seconds=0.01)
        plan = make_plan(actions=["slow"])

        with pytest.raises(StepTimeoutError, match="Step timed out after 0.01s"):
            await dispatcher.dispatch(plan.steps[0], plan)

    def test_step_timeout_is_a_planrunner_error(self):
        error = StepTimeoutError(2.5)
        assert isinstance(error, PlanRunnerException)
        assert error.timeout_seconds == 2.5

    def test_register_and_actions(self):
        dispatcher = StepDispatcher()
        dispatcher.register("b", noop_handler)
        dispatcher.register("a", noop_handler)

        assert dispatcher.has_handler("a")
        assert list(dispatcher.actions) == ["a", "b"]

    def test_register_requires_action_name(self):
        with pytest.raises(ValueError):
            StepDispatcher().register("", noop_handler)


class TestBuiltinHandlers:

    def test_register_builtin_handlers(self):
        dispatcher = register_builtin_handlers(StepDispatcher())
        assert set(dispatcher.actions) == set(BUILTIN_HANDLERS)

    @pytest.mark.asyncio
    async def test_noop_handler(self):
        step = PlanStep(id="s", description="Say hi", params={"message": "hi"})
        outcome = await noop_handler(step, {})
        assert outcome.success
        assert outcome.message == "hi"

    @pytest.mark.asyncio
    async def test_delay_handler(self):
        step = PlanStep(id="s", description="wait", params={"seconds": 0})
        outcome = await delay_handler(step, {})
        assert outcome.success
        assert outcome.message == "Waited 0s"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seconds", [-1, "soon"])
    async def test_delay_handler_rejects_invalid_delay(self, seconds):
        step = PlanStep(id="s", description="wait", params={"seconds": seconds})
        outcome = await delay_handler(step, {})
        assert not outcome.success

    @pytest.fixture
    def mock_transport(self, monkeypatch):
        requests = []
        real_client = httpx.AsyncClient

        def respond(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.path == "/missing":
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(201, json={"id": "item-1"})

        def client_factory(**kwargs):
            return real_client(transport=httpx.MockTransport(respond), **kwargs)

        monkeypatch.setattr(builtin_handlers.httpx, "AsyncClient", client_factory)
        return requests

    @pytest.mark.asyncio
    async def test_http_request_handler_success(self, mock_transport):
        step = PlanStep(
            id="s",
            description="create",
            params={"method": "post", "url": "https://api.example.com/items", "json": {"name": "x"}},
        )

        outcome = await http_request_handler(step, {})

        assert outcome.success
        assert outcome.result == {"id": "item-1"}
        assert mock_transport[0].method == "POST"

    @pytest.mark.asyncio
    async def test_http_request_handler_error_status(self, mock_transport):
        step = PlanStep(id="s", description="get", params={"url": "https://api.example.com/missing"})

        outcome = await http_request_handler(step, {})

        assert not outcome.success
        assert "HTTP 404" in outcome.message

    @pytest.mark.asyncio
    async def test_http_request_handler_requires_url(self):
        outcome = await http_request_handler(PlanStep(id="s", description="get"), {})
        assert not outcome.success
