"""
API request and response models for Larek auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Session, UserAccount

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: deliverability is not our problem, shape is.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PHONE_PATTERN = r"^\+?[0-9()\-\s]{5,32}$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _Credentials(BaseModel):
    """Email + password. Passwords are taken byte-for-byte: never stripped or case-folded."""

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    # Presence only: imported accounts predate the length policy, which
    # RegisterRequest and PasswordChange apply to new passwords.
    # bcrypt truncates at 72 bytes; cap here so the truncation never bites.
    password: str = Field(min_length=1, max_length=72)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class LoginRequest(_Credentials):
    """Request body for POST /api/v1/auth/login."""


class RegisterRequest(_Credentials):
    """Request body for POST /api/v1/auth/register."""

    password: str = Field(min_length=6, max_length=72)
    name: Optional[str] = Field(default=None, min_length=2, max_length=30)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value


class RefreshRequest(BaseModel):
    """Optional body for POST /api/v1/auth/token (non-browser clients).

    Browser clients send the HttpOnly cookie instead; the cookie wins when
    both are present.
    """

    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class ProfilePatch(BaseModel):
    """Request body for PATCH /api/v1/auth/user."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=2, max_length=30)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)


class PasswordChange(BaseModel):
    """Request body for POST /api/v1/auth/user/password."""

    current_password: str = Field(min_length=1, max_length=72)
    new_password: str = Field(min_length=6, max_length=72)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    """Body of every response that issues tokens (register, login, refresh).

    The refresh token is NOT in the body -- it travels only in the HttpOnly
    refresh_token cookie.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user_id: int


class UserResponse(BaseModel):
    """Public view of an account. Never carries the password hash or roles."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: str
    phone: Optional[str] = None
    created_at: str

    @classmethod
    def from_account(cls, account: UserAccount) -> "UserResponse":
        return cls(
            id=account.id,
            email=account.email,
            name=account.display_name,
            phone=account.phone,
            created_at=account.created_at or "",
        )


class AdminUserResponse(UserResponse):
    """Admin view of an account -- adds the role set."""

    roles: list[str]

    @classmethod
    def from_account(cls, account: UserAccount) -> "AdminUserResponse":
        return cls(
            id=account.id,
            email=account.email,
            name=account.display_name,
            phone=account.phone,
            created_at=account.created_at or "",
            roles=sorted(account.roles),
        )


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_users: int
    total_pages: int
    current_page: int
    page_size: int


class UserListResponse(BaseModel):
    """Response for GET /api/v1/auth/users -- one page of accounts, newest first."""

    model_config = ConfigDict(frozen=True)

    users: list[AdminUserResponse]
    pagination: Pagination


class SessionResponse(BaseModel):
    """One live session. The digest is never exposed."""

    model_config = ConfigDict(frozen=True)

    id: int
    issued_at: str
    expires_at: str

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            id=session.id,
            issued_at=session.issued_at.isoformat(),
            expires_at=session.expires_at.isoformat(),
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: bool = True
    message: str = ""


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
