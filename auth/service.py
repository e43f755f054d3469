"""
auth/service.py -- Register / login / refresh / logout flows.

SessionService composes CredentialStore, TokenIssuer and SessionRegistry.
Routes call it and only deal with cookies and response bodies.

Session state machine:
  Anonymous --register/login--> Authenticated (one live Session row)
  Authenticated --refresh ok--> Authenticated (row rotated to a new digest)
  Authenticated --refresh on a non-live digest--> Revoked (ALL rows of the user)
  Authenticated --logout--> Revoked (that one row)

Reuse detection [RD1]:
  A refresh token with a valid signature whose digest matches no live
  session has either been rotated already, logged out, or revoked. The
  legitimate client always holds the newest token, so presenting an old one
  means someone else has a copy. Every session of the user is revoked and the
  caller gets Unauthorized, forcing re-authentication on all devices.

Commit semantics: once a session row is created or rotated the operation is
committed, even if the client disconnects before reading the response.
"""

from __future__ import annotations

import logging

from auth.credentials import CredentialStore
from auth.errors import SessionNotFound, Unauthorized
from auth.models import Session, TokenPair, UserAccount
from auth.sessions import SessionRegistry
from auth.store import UserStore
from auth.tokens import REFRESH, TokenIssuer

logger = logging.getLogger("larek.auth")


class SessionService:
    """Orchestrates the credential and session lifecycle.

    Usage:
        service = SessionService(users, credentials, issuer, registry)
        pair = service.login("a@b.c", "secret1")
        pair = service.refresh(pair.refresh.token)
        service.logout(pair.refresh.token)
    """

    def __init__(
        self,
        users: UserStore,
        credentials: CredentialStore,
        issuer: TokenIssuer,
        registry: SessionRegistry,
    ) -> None:
        self.users = users
        self.credentials = credentials
        self.issuer = issuer
        self.registry = registry

    # ------------------------------------------------------------------
    # Anonymous -> Authenticated
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, display_name: str | None = None) -> TokenPair:
        """Create an account and start its first session. Raises Conflict."""
        account = self.credentials.register(email, password, display_name)
        return self._start_session(account)

    def login(self, email: str, password: str) -> TokenPair:
        """Verify credentials and start a new session. Raises InvalidCredentials."""
        account = self.credentials.verify(email, password)
        return self._start_session(account)

    def _start_session(self, account: UserAccount) -> TokenPair:
        refresh = self.issuer.issue_refresh_token(account.id)
        self.registry.create(account.id, self.registry.digest(refresh.token), refresh.expires_at)
        access = self.issuer.issue_access_token(account.id)
        logger.info("Session started for user_id=%s", account.id)
        return TokenPair(user=account, access=access, refresh=refresh)

    # ------------------------------------------------------------------
    # Authenticated -> Authenticated | Revoked
    # ------------------------------------------------------------------

    def refresh(self, raw_refresh_token: str | None) -> TokenPair:
        """Exchange a refresh token for a new pair. Raises Unauthorized.

        On a non-live digest every session of the user is revoked [RD1].
        """
        claims = self.issuer.verify(REFRESH, raw_refresh_token or "")
        if claims is None:
            raise Unauthorized()

        account = self.users.get_by_id(claims.user_id)
        if account is None:
            logger.warning("Refresh for missing user_id=%s; revoking its sessions", claims.user_id)
            self.registry.revoke_all(claims.user_id)
            raise Unauthorized()

        refresh = self.issuer.issue_refresh_token(account.id)
        try:
            self.registry.rotate(
                account.id,
                self.registry.digest(raw_refresh_token),
                self.registry.digest(refresh.token),
                refresh.expires_at,
            )
        except SessionNotFound as exc:
            revoked = self.registry.revoke_all(account.id)
            logger.warning(
                "Refresh token reuse detected for user_id=%s (jti=%s); revoked %d session(s)",
                account.id,
                claims.token_id,
                revoked,
            )
            raise Unauthorized() from exc

        access = self.issuer.issue_access_token(account.id)
        logger.info("Session rotated for user_id=%s", account.id)
        return TokenPair(user=account, access=access, refresh=refresh)

    # ------------------------------------------------------------------
    # Authenticated -> Revoked
    # ------------------------------------------------------------------

    def logout(self, raw_refresh_token: str | None) -> None:
        """Revoke the session behind the token, if any. Never raises for a bad token."""
        claims = self.issuer.verify(REFRESH, raw_refresh_token or "")
        if claims is None:
            return
        if self.registry.revoke_one(claims.user_id, self.registry.digest(raw_refresh_token)):
            logger.info("Session revoked for user_id=%s", claims.user_id)

    def logout_everywhere(self, user_id: int) -> int:
        revoked = self.registry.revoke_all(user_id)
        logger.info("Revoked %d session(s) for user_id=%s", revoked, user_id)
        return revoked

    def change_password(self, user_id: int, current_password: str, new_password: str) -> TokenPair:
        """Replace the password, end every existing session, and start a fresh one."""
        account = self.credentials.change_password(user_id, current_password, new_password)
        self.registry.revoke_all(account.id)
        return self._start_session(account)

    def sessions_for(self, user_id: int) -> list[Session]:
        return self.registry.list_for_user(user_id)
