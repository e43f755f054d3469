"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these classes only own the domain shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    customer = "customer"
    admin = "admin"


@dataclass
class UserAccount:
    """Identity and authorization root.

    email is always stored stripped and lower-cased; the store normalizes it
    on every read and write so lookups are case-insensitive.

    password_hash is scheme-tagged by its own shape: bcrypt hashes start with
    "$2", legacy hashes are a bare 32-char MD5 hex digest (see
    auth/credentials.py). Never serialize this field to a client.
    """

    email: str
    password_hash: str
    roles: set[str] = field(default_factory=lambda: {Role.customer.value})
    id: int | None = None
    display_name: str = ""
    phone: str | None = None
    created_at: str | None = None


@dataclass
class Session:
    """One outstanding refresh-token grant.

    token_digest is HMAC-SHA256(SESSION_DIGEST_SECRET, raw_refresh_token).
    The raw token is never persisted. expires_at mirrors the token's own exp
    claim so the row can never outlive the token it stands for.
    """

    user_id: int
    token_digest: str
    issued_at: datetime
    expires_at: datetime
    id: int | None = None


@dataclass(frozen=True)
class Identity:
    """The caller behind a request, with roles resolved live from the store."""

    user_id: int
    email: str
    roles: frozenset[str]

    def has_role(self, role: Role | str) -> bool:
        value = role.value if isinstance(role, Role) else role
        return value in self.roles


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of an access or refresh token."""

    user_id: int
    kind: str  # "access" | "refresh"
    issued_at: datetime
    expires_at: datetime
    token_id: str


@dataclass(frozen=True)
class IssuedToken:
    """A freshly signed token plus its absolute expiry."""

    token: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenPair:
    """What a successful register/login/refresh hands back to the transport layer."""

    user: UserAccount
    access: IssuedToken
    refresh: IssuedToken
