"""Built-in step handlers available to every dispatcher."""

from __future__ import annotations

import asyncio
from typing import Any, Dict

import httpx
import structlog

from planrunner.domain.plans.models import PlanStep, StepOutcome
from planrunner.infrastructure.plans.step_dispatcher import StepDispatcher


logger = structlog.get_logger(__name__)

HTTP_TIMEOUT_SECONDS = 30.0


async def noop_handler(step: PlanStep, context: Dict[str, Any]) -> StepOutcome:
    logger.info("noop step", plan_id=context.get("plan_id"), step_id=step.id)
    return StepOutcome.succeeded(step.params.get("message") or f"{step.description} done")


async def delay_handler(step: PlanStep, context: Dict[str, Any]) -> StepOutcome:
    try:
        seconds = float(step.params.get("seconds", 1))
    except (TypeError, ValueError):
        return StepOutcome.failed(f"Invalid delay: {step.params.get('seconds')!r}")
    if seconds < 0:
        return StepOutcome.failed(f"Invalid delay: {seconds}")
    await asyncio.sleep(seconds)
    return StepOutcome.succeeded(f"Waited {seconds:g}s")


async def http_request_handler(step: PlanStep, context: Dict[str, Any]) -> StepOutcome:
    url = step.params.get("url")
    if not url:
        return StepOutcome.failed("http_request step requires params.url")
    method = str(step.params.get("method", "GET")).upper()

    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
        response = await client.request(
            method,
            url,
            json=step.params.get("json"),
            headers=step.params.get("headers"),
        )

    if response.status_code >= 400:
        return StepOutcome.failed(f"{method} {url} returned HTTP {response.status_code}")

    try:
        body: Any = response.json()
    except ValueError:
        body = response.text
    return StepOutcome.succeeded(
        f"{method} {url} returned HTTP {response.status_code}",
        result=body,
    )


BUILTIN_HANDLERS = {
    "noop": noop_handler,
    "delay": delay_handler,
    "http_request": http_request_handler,
}


def register_builtin_handlers(dispatcher: StepDispatcher) -> StepDispatcher:
    for action, handler in BUILTIN_HANDLERS.items():
        dispatcher.register(action, handler)
    return dispatcher
