"""FastAPI application for plan approval and execution."""

from contextlib import asynccontextmanager
from typing import Any, Dict

import structlog
from fastapi import Depends, FastAPI

from planrunner import __version__
from planrunner.api.cors_config import configure_cors
from planrunner.api.routers import plans
from planrunner.application.plans import PlanExecutionUseCases
from planrunner.application.plans.providers import (
    get_plan_use_cases,
    shutdown_plan_runtime,
)
from planrunner.core.config import settings, validate_secrets
from planrunner.core.logging import configure_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    configure_logging()
    logger.info("Starting planrunner", env=settings.APP_ENV, version=__version__)

    validate_secrets()
    await get_plan_use_cases()

    yield

    logger.info("Shutting down planrunner")
    await shutdown_plan_runtime()


def create_app() -> FastAPI:
    """Build the API application with its routes and middleware."""
    app = FastAPI(
        title="Plan Runner API",
        description="Approve, run, step through and cancel agent plans",
        version=__version__,
        lifespan=lifespan,
    )

    configure_cors(app)
    app.include_router(plans.router)

    @app.get("/health")
    async def health(
        use_cases: PlanExecutionUseCases = Depends(plans.get_plan_use_cases),
    ) -> Dict[str, Any]:
        return {
            "status": "healthy",
            "version": __version__,
            "activeRuns": use_cases.active_runs,
            "executingPlans": use_cases.registry.active_plan_ids(),
        }

    return app
