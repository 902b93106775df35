"""Authentication middleware for the plan API."""

import hmac
from typing import Any, Dict, List, Optional

import jwt
from jwt import exceptions as jwt_exceptions
import structlog
from fastapi import HTTPException, Request, status
from fastapi.security.utils import get_authorization_scheme_param
from pydantic import BaseModel, Field

from planrunner.api.error_helpers import safe_auth_error
from planrunner.core.config import is_dev_auth_bypass_allowed, settings

logger = structlog.get_logger(__name__)

DEV_BYPASS_HEADER = "X-Dev-Bypass-Token"


class AuthType:
    """Authentication types."""
    BEARER = "bearer"
    NONE = "none"


class AuthUser(BaseModel):
    """Authenticated user model."""
    id: str
    auth_type: str
    username: Optional[str] = None
    scopes: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


DEV_USER = AuthUser(
    id="dev",
    auth_type=AuthType.NONE,
    username="developer",
    metadata={"auto_dev_user": True},
)


class AuthMiddleware:
    """
    Bearer JWT authentication.

    Tokens are HS256 (configurable) JWTs signed with SECRET_KEY; the `sub`
    claim becomes the user id. When the development bypass is allowed,
    requests carrying the bypass token header get a developer user.
    """

    def decode_token(self, token: str) -> AuthUser:
        """
        Decode and verify a bearer token.

        Raises:
            HTTPException: 401 if the token is invalid or no secret is configured
        """
        if not settings.SECRET_KEY:
            logger.warning("Bearer token received but SECRET_KEY is not configured")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=safe_auth_error("SECRET_KEY is not configured"),
            )
        try:
            claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        except jwt_exceptions.PyJWTError as e:
            logger.warning("Token validation failed", error=str(e))
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=safe_auth_error(str(e)),
                headers={"WWW-Authenticate": "Bearer"},
            )

        subject = claims.get("sub")
        if not subject:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=safe_auth_error("Token has no subject"),
                headers={"WWW-Authenticate": "Bearer"},
            )

        scopes = claims.get("scopes") or []
        if isinstance(scopes, str):
            scopes = scopes.split()
        return AuthUser(
            id=str(subject),
            auth_type=AuthType.BEARER,
            username=claims.get("email") or claims.get("username"),
            scopes=scopes,
            metadata={k: v for k, v in claims.items() if k not in ("sub", "exp", "iat")},
        )

    async def authenticate(self, request: Request) -> Optional[AuthUser]:
        """Authenticate a request. Returns None when no credentials are sent."""
        authorization = request.headers.get("Authorization")
        if authorization:
            scheme, token = get_authorization_scheme_param(authorization)
            if scheme.lower() == "bearer" and token:
                user = self.decode_token(token)
                logger.debug("Token validated", user_id=user.id)
                return user

        bypass_token = request.headers.get(DEV_BYPASS_HEADER)
        if (
            bypass_token
            and is_dev_auth_bypass_allowed()
            and hmac.compare_digest(bypass_token.encode(), settings.DEV_AUTH_BYPASS_TOKEN.encode())
        ):
            logger.info("Dev auth bypass active: injecting developer user")
            return DEV_USER

        return None

    def require_auth(self):
        """
        Dependency to require authentication.

        Usage:
            @router.get("/resource")
            async def get_resource(user: AuthUser = Depends(auth_middleware.require_auth())):
                ...
        """
        async def auth_dependency(request: Request) -> AuthUser:
            user = await self.authenticate(request)
            if not user:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Unauthorized",
                    headers={"WWW-Authenticate": "Bearer"},
                )
            request.state.auth_user = user
            return user

        return auth_dependency

    def optional_auth(self):
        """
        Dependency for optional authentication.

        Lets a route validate its payload before deciding that a missing
        user is an error.
        """
        async def auth_dependency(request: Request) -> Optional[AuthUser]:
            user = await self.authenticate(request)
            request.state.auth_user = user
            return user

        return auth_dependency


auth_middleware = AuthMiddleware()
