"""Tests for bearer token authentication and the dev bypass."""

import time

import jwt
import pytest
from fastapi import FastAPI, Depends, HTTPException
from fastapi.testclient import TestClient

from planrunner.api.auth_middleware import (
    DEV_BYPASS_HEADER,
    AuthMiddleware,
    AuthType,
    AuthUser,
)
from planrunner.core.config import settings


TEST_SECRET = "unit-test-secret-key-0123456789"


@pytest.fixture
def middleware(monkeypatch):
    monkeypatch.setattr(settings, "SECRET_KEY", TEST_SECRET)
    monkeypatch.setattr(settings, "APP_ENV", "development")
    monkeypatch.setattr(settings, "DEV_AUTH_BYPASS", False)
    monkeypatch.setattr(settings, "DEV_AUTH_BYPASS_TOKEN", None)
    return AuthMiddleware()


@pytest.fixture
def app(middleware):
    test_app = FastAPI()

    @test_app.get("/required")
    async def required(user: AuthUser = Depends(middleware.require_auth())):
        return {"id": user.id, "auth_type": user.auth_type}

    @test_app.get("/optional")
    async def optional(user=Depends(middleware.optional_auth())):
        return {"id": user.id if user else None}

    return test_app


def make_token(secret=TEST_SECRET, **claims):
    payload = {"sub": "user-123", "exp": int(time.time()) + 60, **claims}
    return jwt.encode(payload, secret, algorithm="HS256")


class TestDecodeToken:

    def test_valid_token(self, middleware):
        user = middleware.decode_token(make_token(email="a@example.com", scopes="plans:run plans:cancel"))

        assert user.id == "user-123"
        assert user.auth_type == AuthType.BEARER
        assert user.username == "a@example.com"
        assert user.scopes == ["plans:run", "plans:cancel"]

    def test_wrong_secret(self, middleware):
        with pytest.raises(HTTPException) as exc_info:
            middleware.decode_token(make_token(secret="another-secret-key-0123456789"))
        assert exc_info.value.status_code == 401

    def test_expired_token(self, middleware):
        with pytest.raises(HTTPException) as exc_info:
            middleware.decode_token(make_token(exp=int(time.time()) - 10))
        assert exc_info.value.status_code == 401

    def test_missing_subject(self, middleware):
        token = jwt.encode({"exp": int(time.time()) + 60}, TEST_SECRET, algorithm="HS256")
        with pytest.raises(HTTPException):
            middleware.decode_token(token)

    def test_no_secret_configured(self, middleware, monkeypatch):
        monkeypatch.setattr(settings, "SECRET_KEY", None)
        with pytest.raises(HTTPException) as exc_info:
            middleware.decode_token(make_token())
        assert exc_info.value.status_code == 401


class TestDependencies:

    def test_require_auth_with_token(self, app):
        client = TestClient(app)
        response = client.get("/required", headers={"Authorization": f"Bearer {make_token()}"})

        assert response.status_code == 200
        assert response.json() == {"id": "user-123", "auth_type": "bearer"}

    def test_require_auth_without_credentials(self, app):
        response = TestClient(app).get("/required")
        assert response.status_code == 401

    def test_optional_auth_without_credentials(self, app):
        response = TestClient(app).get("/optional")
        assert response.status_code == 200
        assert response.json() == {"id": None}

    def test_dev_bypass_requires_matching_header(self, app, monkeypatch):
        monkeypatch.setattr(settings, "DEV_AUTH_BYPASS", True)
        monkeypatch.setattr(settings, "DEV_AUTH_BYPASS_TOKEN", "bypass-token")
        client = TestClient(app)

        assert client.get("/required").status_code == 401
        assert client.get("/required", headers={DEV_BYPASS_HEADER: "wrong"}).status_code == 401

        response = client.get("/required", headers={DEV_BYPASS_HEADER: "bypass-token"})
        assert response.status_code == 200
        assert response.json()["id"] == "dev"

    def test_dev_bypass_disabled_outside_development(self, app, monkeypatch):
        monkeypatch.setattr(settings, "APP_ENV", "production")
        monkeypatch.setattr(settings, "DEV_AUTH_BYPASS", True)
        monkeypatch.setattr(settings, "DEV_AUTH_BYPASS_TOKEN", "bypass-token")

        response = TestClient(app).get("/required", headers={DEV_BYPASS_HEADER: "bypass-token"})

        assert response.status_code == 401
