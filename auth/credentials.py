"""
auth/credentials.py -- Password hashing, verification and legacy-hash migration.

Security design decisions:
  Strong scheme: bcrypt, used directly (no passlib wrapper -- passlib's
       wrap-bug probe trips bcrypt 4.x's 72-byte check). Cost factor comes
       from Settings.bcrypt_rounds.

  Legacy scheme: accounts imported from the previous shop backend carry an
       unsalted MD5 hex digest. A hash is legacy-tagged purely by its shape
       (32 lowercase hex chars); bcrypt hashes always start with "$2". On the
       first successful login the hash is rewritten to bcrypt before success is
       returned (migration-on-read) [L1].

  Timing equalization [C1]: every verify() runs exactly one bcrypt check,
       whether the email is unknown, the hash is legacy, or the password is
       wrong. Unknown emails and legacy hashes check against a dummy hash of
       the same cost so response time does not reveal which case occurred.

Layer rule: no imports from api/. Import from core/ is not needed -- the cost
factor is injected by the caller.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
from functools import lru_cache

import bcrypt
from sqlalchemy.exc import IntegrityError

from auth.errors import Conflict, InvalidCredentials
from auth.models import Role, UserAccount
from auth.store import UserStore, normalize_email

logger = logging.getLogger("larek.auth")

_LEGACY_HASH_RE = re.compile(r"^[0-9a-f]{32}$")

# ---------------------------------------------------------------------------
# Hash primitives
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer caps
    passwords at 72 characters, which keeps ASCII input under the threshold.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed or non-bcrypt hash
        return False


def is_legacy_hash(hashed: str) -> bool:
    return bool(_LEGACY_HASH_RE.match(hashed or ""))


def legacy_hash(plain: str) -> str:
    """Unsalted MD5 hex digest -- the legacy scheme. Only used to verify and to build fixtures."""
    return hashlib.md5(plain.encode("utf-8")).hexdigest()  # noqa: S324 # nosec B324 -- legacy verification only


@lru_cache(maxsize=8)
def _dummy_hash(rounds: int) -> str:
    # One per cost factor, computed once so the first login is not slower.
    return hash_password("larek_timing_dummy", rounds)


# ---------------------------------------------------------------------------
# CredentialStore
# ---------------------------------------------------------------------------


class CredentialStore:
    """Verifies presented passwords against stored accounts and creates new ones.

    Usage:
        credentials = CredentialStore(user_store, bcrypt_rounds=12)
        account = credentials.register("a@b.c", "secret1", display_name="Ann")
        account = credentials.verify("a@b.c", "secret1")
    """

    def __init__(self, users: UserStore, bcrypt_rounds: int = 12) -> None:
        self.users = users
        self.bcrypt_rounds = bcrypt_rounds
        _dummy_hash(bcrypt_rounds)

    def verify(self, email: str, password: str) -> UserAccount:
        """Return the account if email and password match; raise InvalidCredentials otherwise.

        Do NOT inline get_by_email() + verify_password() elsewhere -- that
        re-introduces the timing side channel this method closes [C1].
        """
        account = self.users.get_by_email(email)
        if account is None:
            verify_password(password, _dummy_hash(self.bcrypt_rounds))
            logger.info("Login failed: unknown email")
            raise InvalidCredentials()

        if not is_legacy_hash(account.password_hash):
            if verify_password(password, account.password_hash):
                return account
            logger.info("Login failed: wrong password for user_id=%s", account.id)
            raise InvalidCredentials()

        # Legacy path [L1]: spend the same bcrypt work, then compare the MD5 digest.
        verify_password(password, _dummy_hash(self.bcrypt_rounds))
        if not hmac.compare_digest(legacy_hash(password), account.password_hash):
            logger.info("Login failed: wrong password for user_id=%s (legacy hash)", account.id)
            raise InvalidCredentials()

        account.password_hash = hash_password(password, self.bcrypt_rounds)
        self.users.update_password_hash(account.id, account.password_hash)
        logger.info("Migrated legacy password hash to bcrypt for user_id=%s", account.id)
        return account

    def register(self, email: str, password: str, display_name: str | None = None) -> UserAccount:
        """Create a customer account with a bcrypt hash. Raises Conflict if the email is taken.

        The up-front lookup gives the common case a cheap answer; the UNIQUE
        constraint catches two registrations racing for the same address.
        """
        email = normalize_email(email)
        if self.users.get_by_email(email) is not None:
            logger.info("Registration rejected: email already registered")
            raise Conflict()

        account = UserAccount(
            email=email,
            password_hash=hash_password(password, self.bcrypt_rounds),
            roles={Role.customer.value},
            display_name=display_name or "",
        )
        try:
            account.id = self.users.create_user(account)
        except IntegrityError as exc:
            logger.info("Registration rejected: concurrent duplicate email")
            raise Conflict() from exc
        logger.info("Registered user_id=%s", account.id)
        return self.users.get_by_id(account.id) or account

    def change_password(self, user_id: int, current_password: str, new_password: str) -> UserAccount:
        """Re-verify the current password, then store a fresh bcrypt hash of the new one."""
        account = self.users.get_by_id(user_id)
        if account is None:
            raise InvalidCredentials()
        account = self.verify(account.email, current_password)
        account.password_hash = hash_password(new_password, self.bcrypt_rounds)
        self.users.update_password_hash(account.id, account.password_hash)
        logger.info("Password changed for user_id=%s", account.id)
        return account
