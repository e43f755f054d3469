"""
auth/sessions.py -- Server-side refresh-token sessions.

One row per outstanding refresh token. The row holds only
HMAC-SHA256(SESSION_DIGEST_SECRET, raw_token), so a database dump alone is not
enough to produce a digest from a stolen token, and raw tokens never reach
disk. The digest is deterministic, which gives an O(1) lookup through the
UNIQUE index on token_digest.

Rotation [R1]:
  rotate() runs one transaction whose FIRST statement is a conditional DELETE
  keyed by (user_id, old_digest, not expired). The database write lock
  serializes concurrent rotations of the same digest: the winner deletes one
  row and inserts the replacement, every loser deletes zero rows and gets
  SessionNotFound. There is deliberately no SELECT before the DELETE -- a
  read-then-write pair would let two callers both observe the old row.

  Starting the transaction with a write also matters for SQLite: a
  transaction that reads first and writes later can fail with SQLITE_BUSY
  instead of waiting for the lock.

No in-process cache: every answer comes from the database so multiple server
processes stay consistent.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, delete, select
from sqlalchemy.engine import Engine

from auth.errors import SessionNotFound
from auth.models import Session
from auth.store import create_store_engine

logger = logging.getLogger("larek.auth")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("token_digest", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("issued_at", DateTime(timezone=True), nullable=False),
    Column("expires_at", DateTime(timezone=True), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands DateTime columns back naive; they were written as UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class SessionRegistry:
    """Repository for Session rows with atomic rotation and revocation.

    Usage:
        registry = SessionRegistry(engine, digest_secret=settings.session_digest_secret)
        session = registry.create(user_id, registry.digest(raw), expires_at)
        registry.rotate(user_id, registry.digest(raw), registry.digest(new_raw), new_expires_at)
        registry.revoke_one(user_id, registry.digest(new_raw))
    """

    def __init__(self, engine: Engine | None = None, digest_secret: str = "", db_url: str | None = None) -> None:
        if not digest_secret:
            raise ValueError("SessionRegistry requires a digest secret.")
        if engine is None:
            if db_url is None:
                raise ValueError("SessionRegistry requires an engine or a db_url.")
            engine = create_store_engine(db_url)
        self.engine: Engine = engine
        self._digest_key = digest_secret.encode()
        _metadata.create_all(self.engine)

    def digest(self, raw_token: str) -> str:
        """Return HMAC-SHA256(SESSION_DIGEST_SECRET, raw_token) as hex."""
        return hmac.new(self._digest_key, raw_token.encode(), hashlib.sha256).hexdigest()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, user_id: int, token_digest: str, expires_at: datetime) -> Session:
        """Insert a new session row.

        expires_at is the refresh token's own exp, so the row never outlives
        the token. Raises sqlalchemy.exc.IntegrityError on a duplicate digest.
        """
        issued_at = _utcnow()
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    user_id=user_id,
                    token_digest=token_digest,
                    issued_at=issued_at,
                    expires_at=expires_at,
                )
            )
            conn.commit()
            session_id = result.inserted_primary_key[0]
        return Session(
            id=session_id,
            user_id=user_id,
            token_digest=token_digest,
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def rotate(self, user_id: int, old_digest: str, new_digest: str, expires_at: datetime) -> Session:
        """Atomically replace the live session holding old_digest with one holding new_digest.

        Raises SessionNotFound if no live session with old_digest exists for
        user_id -- already rotated, logged out, revoked, expired, or never
        issued. At most one concurrent caller per old_digest succeeds [R1].
        """
        now = _utcnow()
        with self.engine.connect() as conn:
            result = conn.execute(
                delete(_sessions).where(
                    (_sessions.c.user_id == user_id)
                    & (_sessions.c.token_digest == old_digest)
                    & (_sessions.c.expires_at > now)
                )
            )
            if result.rowcount != 1:
                conn.rollback()
                raise SessionNotFound()
            inserted = conn.execute(
                _sessions.insert().values(
                    user_id=user_id,
                    token_digest=new_digest,
                    issued_at=now,
                    expires_at=expires_at,
                )
            )
            conn.commit()
            session_id = inserted.inserted_primary_key[0]
        return Session(
            id=session_id,
            user_id=user_id,
            token_digest=new_digest,
            issued_at=now,
            expires_at=expires_at,
        )

    def revoke_one(self, user_id: int, token_digest: str) -> bool:
        """Delete a single session. Returns False if it was already gone."""
        with self.engine.connect() as conn:
            result = conn.execute(
                delete(_sessions).where((_sessions.c.user_id == user_id) & (_sessions.c.token_digest == token_digest))
            )
            conn.commit()
        return result.rowcount > 0

    def revoke_all(self, user_id: int) -> int:
        """Delete every session for the user. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(delete(_sessions).where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def purge_expired(self) -> int:
        """Delete all sessions past their expiry. Returns number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(delete(_sessions).where(_sessions.c.expires_at <= _utcnow()))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, user_id: int, token_digest: str) -> Session | None:
        """Return the live session for (user_id, digest), or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_sessions).where(
                    (_sessions.c.user_id == user_id)
                    & (_sessions.c.token_digest == token_digest)
                    & (_sessions.c.expires_at > _utcnow())
                )
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def list_for_user(self, user_id: int) -> list[Session]:
        """Return the user's live sessions, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_sessions)
                .where((_sessions.c.user_id == user_id) & (_sessions.c.expires_at > _utcnow()))
                .order_by(_sessions.c.issued_at.desc(), _sessions.c.id.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token_digest=row.token_digest,
        issued_at=_as_utc(row.issued_at),
        expires_at=_as_utc(row.expires_at),
    )
