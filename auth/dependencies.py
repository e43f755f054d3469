"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and roles.

Token sources, checked in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. "access_token" cookie -- set by the login/refresh responses for browsers.
The header wins when both are present.

Roles are never read from the token. Every request re-reads the account from
the store, so a role removed after a token was issued stops working at once,
not when the token expires [AZ1].

try_get_identity() is the soft variant (returns None on failure).
get_current_identity() wraps it and raises HTTP 401 if unauthenticated.
require_role(role) wraps get_current_identity() and raises HTTP 403 if the
role is missing. 401 and 403 stay distinct all the way to the client.

Layer rule: no imports from core/ or api/.
  This module may import from fastapi (for HTTPException/Request) because it
  is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.errors import Forbidden, Unauthorized
from auth.models import Identity, Role
from auth.store import UserStore
from auth.tokens import ACCESS, ACCESS_COOKIE, TokenIssuer

logger = logging.getLogger("larek.auth")


def extract_access_token(request: Request) -> str | None:
    """Return the raw access token from the Bearer header or the cookie, header first."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(ACCESS_COOKIE) or None


def try_get_identity(request: Request) -> Identity | None:
    """Verify the access token and resolve the caller's live identity.

    Returns None on any failure. Never raises -- callers that need a hard 401
    should use get_current_identity().
    """
    token = extract_access_token(request)
    if not token:
        return None

    issuer: TokenIssuer = request.app.state.token_issuer
    claims = issuer.verify(ACCESS, token)
    if claims is None:
        return None

    user_store: UserStore = request.app.state.user_store
    account = user_store.get_by_id(claims.user_id)  # [AZ1] live lookup
    if account is None:
        logger.info("Valid access token for missing user_id=%s", claims.user_id)
        return None
    return Identity(user_id=account.id, email=account.email, roles=frozenset(account.roles))


def get_current_identity(request: Request) -> Identity:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    identity = try_get_identity(request)
    if identity is None:
        raise HTTPException(
            status_code=Unauthorized.status_code,
            detail={"code": Unauthorized.error_code, "message": Unauthorized.default_message},
        )
    return identity


def check_role(identity: Identity, role: Role | str) -> None:
    """Raise Forbidden if the identity lacks the role."""
    if not identity.has_role(role):
        value = role.value if isinstance(role, Role) else role
        logger.info("Forbidden: user_id=%s lacks role %s", identity.user_id, value)
        raise Forbidden()


def require_role(role: Role | str) -> Callable[[Request], Identity]:
    """Build a dependency that requires a specific role.

    Raises HTTP 401 if unauthenticated, HTTP 403 if the role is missing.

        @router.get("/admin-only")
        def route(identity: Identity = Depends(require_role(Role.admin))): ...
    """

    def dependency(request: Request) -> Identity:
        identity = get_current_identity(request)
        try:
            check_role(identity, role)
        except Forbidden as exc:
            raise HTTPException(
                status_code=exc.status_code,
                detail={"code": exc.error_code, "message": exc.message},
            ) from exc
        return identity

    return dependency


require_admin = require_role(Role.admin)
