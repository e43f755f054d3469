"""
auth/tokens.py -- JWT issuance and verification for access and refresh tokens.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       different secrets, so holding one kind never lets you forge the other.
       The "typ" claim is checked as well, as a second guard.

  Claim schema (version 1), validated structurally before any field is used:
       sub  str   user id as a decimal string
       typ  str   "access" | "refresh"
       ver  int   schema version, currently 1
       iat  int   issued-at, epoch seconds
       exp  int   expiry, epoch seconds
       jti  str   random id; makes every token unique even within one second
       Unknown claims are rejected. Roles are never embedded -- authorization
       always re-reads them from the account store (see auth/dependencies.py).

  Verification returns None on any failure (bad signature, malformed payload,
       wrong kind, wrong version, expiry). Callers cannot tell these apart,
       and neither can clients.

Layer rule: no imports from api/. Import from core/ is allowed -- core/ is the
kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Literal

from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from auth.models import IssuedToken, TokenClaims
from core.config import Settings

logger = logging.getLogger("larek.auth")

_ALGORITHM = "HS256"
_TOKEN_VERSION = 1

ACCESS = "access"
REFRESH = "refresh"


class _ClaimsV1(BaseModel):
    """Strict shape of a version-1 token payload."""

    model_config = ConfigDict(extra="forbid", strict=True, frozen=True)

    sub: str = Field(pattern=r"^[0-9]+$", max_length=20)
    typ: Literal["access", "refresh"]
    ver: Literal[1]
    iat: int
    exp: int
    jti: str = Field(min_length=16, max_length=64)


class TokenIssuer:
    """Signs and verifies access and refresh tokens. Holds no storage.

    Usage:
        issuer = TokenIssuer.from_settings(get_settings())
        access = issuer.issue_access_token(42)
        claims = issuer.verify("access", access.token)   # TokenClaims or None
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl_seconds: int = 15 * 60,
        refresh_ttl_seconds: int = 30 * 24 * 60 * 60,
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh tokens must use different signing secrets.")
        self._secrets = {ACCESS: access_secret, REFRESH: refresh_secret}
        self._ttls = {ACCESS: access_ttl_seconds, REFRESH: refresh_ttl_seconds}

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenIssuer":
        return cls(
            access_secret=settings.access_token_secret,
            refresh_secret=settings.refresh_token_secret,
            access_ttl_seconds=settings.access_token_expire_seconds,
            refresh_ttl_seconds=settings.refresh_token_expire_seconds,
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access_token(self, user_id: int, expire_seconds: int = 0) -> IssuedToken:
        """Sign a short-lived access token. expire_seconds=0 uses the configured TTL."""
        return self._issue(ACCESS, user_id, expire_seconds)

    def issue_refresh_token(self, user_id: int, expire_seconds: int = 0) -> IssuedToken:
        """Sign a long-lived refresh token.

        The returned token string is also the raw input to the session digest
        (SessionRegistry.digest); it is handed to the client once and never stored.
        """
        return self._issue(REFRESH, user_id, expire_seconds)

    def _issue(self, kind: str, user_id: int, expire_seconds: int) -> IssuedToken:
        duration = expire_seconds if expire_seconds != 0 else self._ttls[kind]
        # JWT timestamps have one-second resolution; truncate so expires_at
        # matches the exp claim exactly.
        now = datetime.now(timezone.utc).replace(microsecond=0)
        expires_at = now + timedelta(seconds=duration)
        payload = {
            "sub": str(user_id),
            "typ": kind,
            "ver": _TOKEN_VERSION,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": secrets.token_urlsafe(24),
        }
        token = jwt.encode(payload, self._secrets[kind], algorithm=_ALGORITHM)
        return IssuedToken(token=token, expires_at=expires_at)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, kind: str, token: str) -> TokenClaims | None:
        """Verify signature, expiry and schema. Returns TokenClaims or None on any failure."""
        secret = self._secrets.get(kind)
        if secret is None or not token:
            return None
        try:
            payload = jwt.decode(token, secret, algorithms=[_ALGORITHM])
        except JWTError as exc:
            logger.debug("Rejected %s token: %s", kind, exc)
            return None
        try:
            claims = _ClaimsV1.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Rejected %s token with malformed payload: %d error(s)", kind, exc.error_count())
            return None
        if claims.typ != kind:
            logger.warning("Rejected token: expected %s, got %s", kind, claims.typ)
            return None
        return TokenClaims(
            user_id=int(claims.sub),
            kind=claims.typ,
            issued_at=datetime.fromtimestamp(claims.iat, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(claims.exp, tz=timezone.utc),
            token_id=claims.jti,
        )


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


def set_session_cookies(response, access: IssuedToken, refresh: IssuedToken, secure: bool = False) -> None:
    """Write both tokens as httpOnly cookies on the response.

    httponly=True: JS cannot read the cookies (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation for the
        refresh and logout endpoints.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches each token's own expiry.
    """
    now = datetime.now(timezone.utc)
    for name, issued in ((ACCESS_COOKIE, access), (REFRESH_COOKIE, refresh)):
        response.set_cookie(
            name,
            value=issued.token,
            httponly=True,
            samesite="lax",
            secure=secure,
            max_age=max(int((issued.expires_at - now).total_seconds()), 0),
            path="/",
        )


def clear_session_cookies(response, secure: bool = False) -> None:
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, path="/", httponly=True, samesite="lax", secure=secure)
