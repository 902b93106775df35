"""CORS configuration for the FastAPI application."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from planrunner.core.config import settings

# Explicit list of allowed HTTP methods (no wildcard)
ALLOWED_METHODS = [
    "GET",
    "POST",
    "OPTIONS",
]

ALLOWED_HEADERS = [
    "Authorization",
    "Content-Type",
    "Accept",
    "X-Request-ID",
    "X-Dev-Bypass-Token",
]

# The browser client reads the plan id off the approval stream response
EXPOSED_HEADERS = [
    "X-Plan-Id",
]


def configure_cors(app: FastAPI) -> None:
    """Configure CORS middleware for the FastAPI application.

    Reads allowed origins from the CORS_ORIGINS setting, a comma-separated
    list such as "https://app.example.com,https://www.example.com".
    """
    origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=ALLOWED_METHODS,
        allow_headers=ALLOWED_HEADERS,
        expose_headers=EXPOSED_HEADERS,
    )
