"""
API routes for plan approval, cancellation and step-by-step execution.

Provides endpoints for:
- Approving a pending plan and streaming its progress (SSE)
- Cancelling a plan that is executing on this process
- Running the next step of a plan approved in step mode (SSE)
- Reading the stored plan together with its live execution flag
"""

from typing import Any, Dict, NoReturn, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from planrunner.api.auth_middleware import AuthUser, auth_middleware
from planrunner.api.error_helpers import safe_error_detail
from planrunner.application.plans import (
    PlanExecutionUseCases,
    validate_approval_request,
    validate_plan_request,
)
from planrunner.application.plans.providers import (
    get_plan_use_cases as provider_get_plan_use_cases,
)
from planrunner.domain.plans.errors import (
    InvalidTransitionError,
    PlanAlreadyExecutingError,
    PlanNotFoundError,
    PlanValidationError,
    ThreadNotFoundError,
)
from planrunner.infrastructure.plans.progress_stream import ProgressStream


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/ai/agent/plan", tags=["plans"])


async def get_plan_use_cases() -> PlanExecutionUseCases:
    """Provide application-layer plan use cases."""
    return await provider_get_plan_use_cases()


# === Request / Response Models ===


class ApprovePlanRequest(BaseModel):
    """Request to approve a pending plan."""
    model_config = ConfigDict(populate_by_name=True)

    plan_id: Optional[str] = Field(None, alias="planId")
    mode: Optional[str] = Field(None, description="all or step")
    thread_id: Optional[str] = Field(None, alias="threadId")


class PlanRequest(BaseModel):
    """Request addressing a single plan (cancel, next step)."""
    model_config = ConfigDict(populate_by_name=True)

    plan_id: Optional[str] = Field(None, alias="planId")
    thread_id: Optional[str] = Field(None, alias="threadId")


class CancelPlanResponse(BaseModel):
    success: bool
    message: str


# === Helpers ===


def _require_user(user: Optional[AuthUser]) -> AuthUser:
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def _raise_http(exc: Exception, plan_id: Optional[str]) -> NoReturn:
    """Translate use case failures into HTTP errors."""
    if isinstance(exc, PlanValidationError):
        raise HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, (ThreadNotFoundError, PlanNotFoundError)):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InvalidTransitionError, PlanAlreadyExecutingError)):
        raise HTTPException(status_code=409, detail=str(exc))
    logger.error("Plan request failed", plan_id=plan_id, error=str(exc), exc_info=True)
    raise HTTPException(status_code=500, detail=safe_error_detail(str(exc)))


def _event_stream_response(stream: ProgressStream) -> StreamingResponse:
    return StreamingResponse(
        stream.sse(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
            "X-Plan-Id": stream.plan_id,
        },
    )


# === Endpoints ===


@router.post("/approve")
async def approve_plan(
    request: ApprovePlanRequest,
    user: Optional[AuthUser] = Depends(auth_middleware.optional_auth()),
    use_cases: PlanExecutionUseCases = Depends(get_plan_use_cases),
):
    """
    Approve a pending plan and stream its execution progress.

    In `all` mode every step runs; in `step` mode the plan is approved and
    the stream ends with `step-mode-enabled`.
    """
    try:
        validate_approval_request(request.plan_id, request.mode, request.thread_id)
    except PlanValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    auth_user = _require_user(user)

    try:
        stream = await use_cases.approve_plan(
            plan_id=request.plan_id,
            mode=request.mode,
            thread_id=request.thread_id,
            user_id=auth_user.id,
        )
    except Exception as e:
        _raise_http(e, request.plan_id)

    return _event_stream_response(stream)


@router.post("/step")
async def run_next_step(
    request: PlanRequest,
    user: Optional[AuthUser] = Depends(auth_middleware.optional_auth()),
    use_cases: PlanExecutionUseCases = Depends(get_plan_use_cases),
):
    """Run the next pending step of a plan approved in step mode."""
    try:
        validate_plan_request(request.plan_id, request.thread_id)
    except PlanValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    auth_user = _require_user(user)

    try:
        stream = await use_cases.run_next_step(
            plan_id=request.plan_id,
            thread_id=request.thread_id,
            user_id=auth_user.id,
        )
    except Exception as e:
        _raise_http(e, request.plan_id)

    return _event_stream_response(stream)


@router.post("/cancel", response_model=CancelPlanResponse)
async def cancel_plan(
    request: PlanRequest,
    user: Optional[AuthUser] = Depends(auth_middleware.optional_auth()),
    use_cases: PlanExecutionUseCases = Depends(get_plan_use_cases),
):
    """
    Request cancellation of an executing plan.

    The step in flight runs to completion; no further step starts. Asking
    for a plan that is not running is not an error (success is false).
    """
    try:
        validate_plan_request(request.plan_id, request.thread_id)
    except PlanValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    auth_user = _require_user(user)

    try:
        result = await use_cases.cancel_plan(
            plan_id=request.plan_id,
            thread_id=request.thread_id,
            user_id=auth_user.id,
        )
    except Exception as e:
        _raise_http(e, request.plan_id)

    return CancelPlanResponse(**result.to_dict())


@router.get("/{thread_id}/{plan_id}")
async def get_plan(
    thread_id: str,
    plan_id: str,
    user: Optional[AuthUser] = Depends(auth_middleware.optional_auth()),
    use_cases: PlanExecutionUseCases = Depends(get_plan_use_cases),
) -> Dict[str, Any]:
    """Get the stored plan and whether this process is executing it."""
    try:
        validate_plan_request(plan_id, thread_id)
    except PlanValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    _require_user(user)

    try:
        snapshot = await use_cases.get_plan(plan_id=plan_id, thread_id=thread_id)
    except Exception as e:
        _raise_http(e, plan_id)

    return {"plan": snapshot.plan.to_dict(), "executing": snapshot.executing}
