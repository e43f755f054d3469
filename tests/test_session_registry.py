"""Unit tests for auth/sessions.py -- SessionRegistry persistence and rotation.

Covers:
- create / get / list_for_user
- rotate: live digest swapped for new digest; stale or expired digest -> SessionNotFound
- rotate is atomic under contention: exactly one of N concurrent callers wins
- revoke_one / revoke_all are idempotent
- purge_expired removes only dead rows
- digest is keyed: raw token never stored, other secret gives other digest
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from auth.errors import SessionNotFound
from auth.sessions import SessionRegistry


def _future(seconds: int = 3600) -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0) + timedelta(seconds=seconds)


def _past(seconds: int = 60) -> datetime:
    return datetime.now(timezone.utc) - timedelta(seconds=seconds)


class TestCreateAndRead:
    def test_create_then_get(self, registry) -> None:
        digest = registry.digest("raw-token-1")
        expires_at = _future()
        created = registry.create(1, digest, expires_at)
        assert created.id is not None

        fetched = registry.get(1, digest)
        assert fetched is not None
        assert fetched.id == created.id
        assert fetched.expires_at == expires_at

    def test_get_is_scoped_to_user(self, registry) -> None:
        digest = registry.digest("raw-token-1")
        registry.create(1, digest, _future())
        assert registry.get(2, digest) is None

    def test_expired_row_is_not_live(self, registry) -> None:
        digest = registry.digest("raw-token-1")
        registry.create(1, digest, _past())
        assert registry.get(1, digest) is None
        assert registry.list_for_user(1) == []

    def test_list_for_user_newest_first(self, registry) -> None:
        first = registry.create(1, registry.digest("one"), _future())
        second = registry.create(1, registry.digest("two"), _future())
        registry.create(2, registry.digest("other-user"), _future())
        assert [s.id for s in registry.list_for_user(1)] == [second.id, first.id]

    def test_requires_digest_secret(self, engine) -> None:
        with pytest.raises(ValueError):
            SessionRegistry(engine, digest_secret="")


class TestDigest:
    def test_digest_is_deterministic_and_not_the_raw_token(self, registry) -> None:
        assert registry.digest("abc") == registry.digest("abc")
        assert registry.digest("abc") != "abc"
        assert len(registry.digest("abc")) == 64

    def test_digest_depends_on_secret(self, engine, registry) -> None:
        other = SessionRegistry(engine, digest_secret="o" * 40)
        assert other.digest("abc") != registry.digest("abc")


class TestRotate:
    def test_rotate_replaces_digest(self, registry) -> None:
        old, new = registry.digest("old"), registry.digest("new")
        registry.create(1, old, _future())

        rotated = registry.rotate(1, old, new, _future(7200))

        assert rotated.token_digest == new
        assert registry.get(1, old) is None
        assert registry.get(1, new) is not None
        assert len(registry.list_for_user(1)) == 1

    def test_rotate_stale_digest_raises(self, registry) -> None:
        old, new = registry.digest("old"), registry.digest("new")
        registry.create(1, old, _future())
        registry.rotate(1, old, new, _future())
        with pytest.raises(SessionNotFound):
            registry.rotate(1, old, registry.digest("newer"), _future())
        # The loser's insert never happened
        assert registry.get(1, registry.digest("newer")) is None
        assert registry.get(1, new) is not None

    def test_rotate_expired_session_raises(self, registry) -> None:
        old = registry.digest("old")
        registry.create(1, old, _past())
        with pytest.raises(SessionNotFound):
            registry.rotate(1, old, registry.digest("new"), _future())

    def test_rotate_other_users_digest_raises(self, registry) -> None:
        old = registry.digest("old")
        registry.create(1, old, _future())
        with pytest.raises(SessionNotFound):
            registry.rotate(2, old, registry.digest("new"), _future())
        assert registry.get(1, old) is not None

    def test_concurrent_rotation_has_exactly_one_winner(self, registry) -> None:
        """N threads rotate the same digest at once; one wins, the rest get SessionNotFound."""
        workers = 6
        old = registry.digest("contended")
        registry.create(1, old, _future())
        barrier = threading.Barrier(workers)
        outcomes: list[str] = []
        lock = threading.Lock()

        def attempt(n: int) -> None:
            barrier.wait()
            try:
                registry.rotate(1, old, registry.digest(f"new-{n}"), _future())
                result = "ok"
            except SessionNotFound:
                result = "lost"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt, args=(n,)) for n in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert len(outcomes) == workers, f"Threads did not finish: {outcomes}"
        assert outcomes.count("ok") == 1, f"Expected one winner, got {outcomes}"
        assert len(registry.list_for_user(1)) == 1


class TestRevoke:
    def test_revoke_one_is_idempotent(self, registry) -> None:
        digest = registry.digest("raw")
        registry.create(1, digest, _future())
        assert registry.revoke_one(1, digest) is True
        assert registry.revoke_one(1, digest) is False
        assert registry.get(1, digest) is None

    def test_revoke_all_only_touches_one_user(self, registry) -> None:
        registry.create(1, registry.digest("a"), _future())
        registry.create(1, registry.digest("b"), _future())
        registry.create(2, registry.digest("c"), _future())

        assert registry.revoke_all(1) == 2
        assert registry.revoke_all(1) == 0
        assert registry.list_for_user(1) == []
        assert len(registry.list_for_user(2)) == 1


class TestPurge:
    def test_purge_removes_only_expired(self, registry) -> None:
        registry.create(1, registry.digest("dead-1"), _past())
        registry.create(2, registry.digest("dead-2"), _past(3600))
        registry.create(1, registry.digest("alive"), _future())

        assert registry.purge_expired() == 2
        assert registry.purge_expired() == 0
        assert registry.get(1, registry.digest("alive")) is not None
