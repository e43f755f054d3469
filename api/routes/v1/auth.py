"""
api/routes/v1/auth.py -- Session lifecycle and account self-service endpoints.

Routes:
  POST  /api/v1/auth/register        -- create account; sets session cookies
  POST  /api/v1/auth/login           -- password login; sets session cookies
  POST  /api/v1/auth/token           -- rotate refresh token (cookie or body)
  GET   /api/v1/auth/token           -- rotate refresh token (cookie)
  POST  /api/v1/auth/logout          -- revoke this session; clears cookies; idempotent
  POST  /api/v1/auth/logout-all      -- revoke every session of the caller (requires auth)
  GET   /api/v1/auth/user            -- current account (requires auth)
  PATCH /api/v1/auth/user            -- update name / phone (requires auth)
  GET   /api/v1/auth/user/roles      -- live role list (requires auth)
  POST  /api/v1/auth/user/password   -- change password; ends all other sessions (requires auth)
  GET   /api/v1/auth/sessions        -- caller's live sessions (requires auth)
  GET   /api/v1/auth/users           -- list accounts, paged and searchable (admin only)

Security:
  [H2] POST /login and /register are rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] CredentialStore.verify() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries tokens.
  [RD1] A failed refresh clears both cookies; SessionService has already
        revoked every session of the user if the token was a replay.
"""

from __future__ import annotations

import logging
import math
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AdminUserResponse,
    ErrorDetail,
    ErrorResponse,
    LoginRequest,
    MessageResponse,
    Pagination,
    PasswordChange,
    ProfilePatch,
    RefreshRequest,
    RegisterRequest,
    SessionResponse,
    TokenResponse,
    UserListResponse,
    UserResponse,
)
from auth.dependencies import get_current_identity, require_admin
from auth.errors import Unauthorized
from auth.models import Identity, TokenPair
from auth.service import SessionService
from auth.store import UserStore
from auth.tokens import REFRESH_COOKIE, clear_session_cookies, set_session_cookies
from core.config import get_settings

logger = logging.getLogger("larek.api")

_settings = get_settings()

_MAX_PAGE_SIZE = 10

# Auth policy:
# - POST   /auth/register, /auth/login:  public -- rate limited
# - GET/POST /auth/token:                public -- the refresh token is the credential
# - POST   /auth/logout:                 public -- clearing cookies needs no prior auth
# - POST   /auth/logout-all:             requires auth (get_current_identity)
# - GET/PATCH /auth/user, /auth/user/*:  requires auth (get_current_identity)
# - GET    /auth/sessions:               requires auth (get_current_identity)
# - GET    /auth/users:                  requires admin (require_admin)
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _service(request: Request) -> SessionService:
    return request.app.state.session_service


def _token_response(pair: TokenPair, status_code: int = 200) -> JSONResponse:
    expires_in = _settings.access_token_expire_seconds
    resp = JSONResponse(
        status_code=status_code,
        content=TokenResponse(
            access_token=pair.access.token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=expires_in,
            user_id=pair.user.id,
        ).model_dump(),
    )
    set_session_cookies(resp, pair.access, pair.refresh, secure=_settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _unauthorized_and_clear(exc: Unauthorized) -> JSONResponse:
    resp = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.error_code, message=exc.message)).model_dump(),
    )
    clear_session_cookies(resp, secure=_settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=TokenResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a customer account and start its first session.

    Duplicate email -> 409 conflict (raised by CredentialStore, rendered by the
    AuthError handler in api/main.py).
    """
    pair = _service(request).register(body.email, body.password, body.name)
    return _token_response(pair, status_code=201)


@limiter.limit(_settings.login_rate_limit)  # [H2]
@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set session cookies.

    Wrong email and wrong password produce the same 401 bad_credentials.
    """
    pair = _service(request).login(body.email, body.password)
    return _token_response(pair)


@router.post("/auth/token", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest | None = None) -> JSONResponse:
    """Exchange the refresh token for a new access + refresh pair.

    The cookie is preferred; the JSON body is accepted for clients without a
    cookie jar. Any failure clears both cookies.
    """
    raw = request.cookies.get(REFRESH_COOKIE) or (body.refresh_token if body else None)
    try:
        pair = _service(request).refresh(raw)
    except Unauthorized as exc:
        return _unauthorized_and_clear(exc)
    return _token_response(pair)


@router.get("/auth/token", response_model=TokenResponse)
def refresh_get(request: Request) -> JSONResponse:
    """Cookie-only variant of POST /auth/token."""
    try:
        pair = _service(request).refresh(request.cookies.get(REFRESH_COOKIE))
    except Unauthorized as exc:
        return _unauthorized_and_clear(exc)
    return _token_response(pair)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: RefreshRequest | None = None) -> JSONResponse:
    """Revoke the presented session and clear cookies.

    Idempotent: an absent, invalid or already-revoked refresh token still
    yields 200 and cleared cookies.
    """
    raw = request.cookies.get(REFRESH_COOKIE) or (body.refresh_token if body else None)
    _service(request).logout(raw)
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_session_cookies(resp, secure=_settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout-all", response_model=MessageResponse)
def logout_all(request: Request, identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    """Revoke every session of the caller ("log out everywhere")."""
    revoked = _service(request).logout_everywhere(identity.user_id)
    resp = JSONResponse(content=MessageResponse(message=f"Revoked {revoked} session(s).").model_dump())
    clear_session_cookies(resp, secure=_settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth/user", response_model=UserResponse)
def get_user(request: Request, identity: Identity = Depends(get_current_identity)) -> UserResponse:
    """Return the current account."""
    user_store: UserStore = request.app.state.user_store
    return UserResponse.from_account(_load_account(user_store, identity.user_id))


@router.patch("/auth/user", response_model=UserResponse)
def update_user(
    request: Request,
    body: ProfilePatch,
    identity: Identity = Depends(get_current_identity),
) -> UserResponse:
    """Update the caller's display name and/or phone."""
    user_store: UserStore = request.app.state.user_store
    if body.name is None and body.phone is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    user_store.update_profile(identity.user_id, display_name=body.name, phone=body.phone)
    return UserResponse.from_account(_load_account(user_store, identity.user_id))


@router.get("/auth/user/roles", response_model=list[str])
def get_user_roles(request: Request, identity: Identity = Depends(get_current_identity)) -> list[str]:
    """Return the caller's roles as currently stored (never from the token)."""
    user_store: UserStore = request.app.state.user_store
    return sorted(user_store.get_roles(identity.user_id))


@router.post("/auth/user/password", response_model=TokenResponse)
def change_password(
    request: Request,
    body: PasswordChange,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Change the password. Every existing session ends; a fresh one is returned."""
    pair = _service(request).change_password(identity.user_id, body.current_password, body.new_password)
    return _token_response(pair)


@router.get("/auth/sessions", response_model=list[SessionResponse])
def list_sessions(request: Request, identity: Identity = Depends(get_current_identity)) -> list[SessionResponse]:
    """List the caller's live sessions, newest first."""
    return [SessionResponse.from_session(s) for s in _service(request).sessions_for(identity.user_id)]


# ---------------------------------------------------------------------------
# Admin only
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=UserListResponse)
def list_users(
    request: Request,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1)] = _MAX_PAGE_SIZE,
    search: Annotated[Optional[str], Query(max_length=100)] = None,
    identity: Identity = Depends(require_admin),
) -> UserListResponse:
    """List accounts with their roles, newest first. Admin only.

    limit is capped at _MAX_PAGE_SIZE; search matches name or email, case-insensitive.
    """
    user_store: UserStore = request.app.state.user_store
    limit = min(limit, _MAX_PAGE_SIZE)
    accounts, total = user_store.list_users(page=page, limit=limit, search=(search or "").strip() or None)
    return UserListResponse(
        users=[AdminUserResponse.from_account(u) for u in accounts],
        pagination=Pagination(
            total_users=total,
            total_pages=math.ceil(total / limit),
            current_page=page,
            page_size=limit,
        ),
    )


def _load_account(user_store: UserStore, user_id: int):
    account = user_store.get_by_id(user_id)
    if account is None:
        # Deleted between the auth check and this read.
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return account
