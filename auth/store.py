"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_account is the mapper. Service and route
code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Emails are normalized (strip + lower) on every read and write. The UNIQUE
  constraint on users.email is therefore effectively case-insensitive, and it
  is the final arbiter when two registrations for the same address race.

Engine sharing:
  create_store_engine() builds the one Engine the process uses. UserStore and
  auth.sessions.SessionRegistry both take it, so accounts and sessions live in
  the same database and share one connection pool.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, or_, select, text
from sqlalchemy.engine import Engine

from auth.models import UserAccount

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("roles", Text, nullable=False, server_default='["customer"]'),  # JSON array
    Column("display_name", String(30), nullable=False, server_default=""),
    Column("phone", String(32)),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases silently stay in "memory"
    journal mode, which is harmless.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str) -> Engine:
    """Create the shared Engine for accounts and sessions."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        # Handlers run in FastAPI's threadpool; connections cross threads.
        connect_args["check_same_thread"] = False
        # Writers wait up to 10s for the write lock instead of failing fast.
        connect_args["timeout"] = 10
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _dump_roles(roles) -> str:
    return json.dumps(sorted({str(getattr(r, "value", r)) for r in roles}))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for UserAccount entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        uid = store.create_user(UserAccount(email="a@b.c", password_hash=hash_password("secret")))
        account = store.get_by_email("A@B.C")
        store.close()
    """

    def __init__(self, db_url: str | None = None, engine: Engine | None = None) -> None:
        if engine is None:
            if db_url is None:
                raise ValueError("UserStore requires an engine or a db_url.")
            engine = create_store_engine(db_url)
        self.engine: Engine = engine
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def create_user(self, account: UserAccount) -> int:
        """Insert a new account and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        CredentialStore.register() catches it as the concurrent-duplicate signal.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=normalize_email(account.email),
                    password_hash=account.password_hash,
                    roles=_dump_roles(account.roles),
                    display_name=account.display_name or "",
                    phone=account.phone,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> UserAccount | None:
        """Look up an account by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, user_id: int) -> UserAccount | None:
        """Look up an account by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_roles(self, user_id: int) -> set[str]:
        """Return the live role set for a user; empty set if the user is gone."""
        with self.engine.connect() as conn:
            raw = conn.execute(select(_users.c.roles).where(_users.c.id == user_id)).scalar()
        return set(json.loads(raw)) if raw else set()

    def list_users(self, page: int = 1, limit: int = 10, search: str | None = None) -> tuple[list[UserAccount], int]:
        """Return one page of accounts, newest first, plus the total match count. Admin-only operation.

        search is a case-insensitive substring match on display name or email;
        LIKE wildcards in it are matched literally.
        """
        condition = None
        if search:
            escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            pattern = f"%{escaped}%"
            condition = or_(
                _users.c.display_name.ilike(pattern, escape="\\"),
                _users.c.email.ilike(pattern, escape="\\"),
            )

        count_query = select(func.count()).select_from(_users)
        page_query = _users.select().order_by(_users.c.created_at.desc(), _users.c.id.desc())
        if condition is not None:
            count_query = count_query.where(condition)
            page_query = page_query.where(condition)

        with self.engine.connect() as conn:
            total = conn.execute(count_query).scalar_one()
            rows = conn.execute(page_query.limit(limit).offset((page - 1) * limit)).fetchall()
        return [_row_to_account(r) for r in rows], total

    def update_password_hash(self, user_id: int, password_hash: str) -> bool:
        """Replace the stored hash. Used by password change and legacy migration."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(password_hash=password_hash))
            conn.commit()
        return result.rowcount > 0

    def update_profile(self, user_id: int, display_name: str | None = None, phone: str | None = None) -> bool:
        """Update the self-service profile fields. None means "leave unchanged"."""
        values: dict = {}
        if display_name is not None:
            values["display_name"] = display_name
        if phone is not None:
            values["phone"] = phone
        if not values:
            return self.get_by_id(user_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def set_roles(self, user_id: int, roles) -> bool:
        """Replace a user's role set. Returns False if the user does not exist."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(roles=_dump_roles(roles)))
            conn.commit()
        return result.rowcount > 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> UserAccount:
    return UserAccount(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        roles=set(json.loads(row.roles)) if row.roles else set(),
        display_name=row.display_name or "",
        phone=row.phone,
        created_at=row.created_at,
    )
