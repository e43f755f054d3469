"""Unit tests for auth/credentials.py -- password verification, migration, registration.

Covers:
- bcrypt verify happy path and wrong password
- unknown email and wrong password raise the same InvalidCredentials
- unknown email still spends one bcrypt check (timing equalization)
- legacy MD5 hash: verify succeeds, hash is rewritten to bcrypt exactly once,
  and the next login goes through the bcrypt path
- legacy hash with the wrong password is rejected and left untouched
- register: Conflict on duplicate email (case-insensitive), bcrypt for new accounts
- change_password re-verifies the current password
"""

from __future__ import annotations

import bcrypt
import pytest

from auth import credentials as credentials_module
from auth.credentials import hash_password, is_legacy_hash, legacy_hash, verify_password
from auth.errors import Conflict, InvalidCredentials


class TestHashPrimitives:
    def test_hash_is_bcrypt_and_verifies(self) -> None:
        hashed = hash_password("secret1", rounds=4)
        assert hashed.startswith("$2")
        assert verify_password("secret1", hashed)
        assert not verify_password("secret2", hashed)

    def test_verify_against_non_bcrypt_hash_is_false_not_error(self) -> None:
        """A legacy MD5 string is not a valid bcrypt hash; checkpw raises, we return False."""
        assert verify_password("secret1", legacy_hash("secret1")) is False

    def test_legacy_tag_detection(self) -> None:
        assert is_legacy_hash(legacy_hash("secret1"))
        assert not is_legacy_hash(hash_password("secret1", rounds=4))
        assert not is_legacy_hash("")
        assert not is_legacy_hash("ABCDEF" * 5 + "AB")  # uppercase hex is not what MD5 hexdigest emits


class TestVerify:
    def test_correct_password_returns_account(self, user_store, credentials, make_user) -> None:
        uid = make_user(user_store, "ann@example.com", "secret1")
        account = credentials.verify("ann@example.com", "secret1")
        assert account.id == uid

    def test_email_lookup_is_case_insensitive(self, user_store, credentials, make_user) -> None:
        uid = make_user(user_store, "ann@example.com", "secret1")
        assert credentials.verify("  ANN@Example.com ", "secret1").id == uid

    def test_wrong_password_and_unknown_email_are_indistinguishable(self, user_store, credentials, make_user) -> None:
        make_user(user_store, "ann@example.com", "secret1")
        with pytest.raises(InvalidCredentials) as wrong_pw:
            credentials.verify("ann@example.com", "nope")
        with pytest.raises(InvalidCredentials) as unknown:
            credentials.verify("ghost@example.com", "secret1")
        assert type(wrong_pw.value) is type(unknown.value)
        assert wrong_pw.value.message == unknown.value.message
        assert wrong_pw.value.error_code == unknown.value.error_code == "bad_credentials"

    def test_unknown_email_still_runs_bcrypt(self, credentials, monkeypatch) -> None:
        """Timing equalization: one bcrypt check even when there is no account."""
        calls = []
        real_checkpw = bcrypt.checkpw

        def counting_checkpw(password, hashed):
            calls.append(hashed)
            return real_checkpw(password, hashed)

        monkeypatch.setattr(credentials_module.bcrypt, "checkpw", counting_checkpw)
        with pytest.raises(InvalidCredentials):
            credentials.verify("ghost@example.com", "whatever")
        assert len(calls) == 1


class TestLegacyMigration:
    def test_legacy_login_migrates_to_bcrypt(self, user_store, credentials, make_user) -> None:
        uid = make_user(user_store, "old@example.com", password_hash=legacy_hash("secret1"))

        account = credentials.verify("old@example.com", "secret1")
        assert account.id == uid

        stored = user_store.get_by_id(uid).password_hash
        assert stored.startswith("$2")
        assert not is_legacy_hash(stored)
        assert verify_password("secret1", stored)

    def test_second_login_uses_strong_path_without_rewrite(self, user_store, credentials, make_user, monkeypatch) -> None:
        make_user(user_store, "old@example.com", password_hash=legacy_hash("secret1"))
        rewrites = []
        real_update = user_store.update_password_hash

        def spy(user_id, password_hash):
            rewrites.append(user_id)
            return real_update(user_id, password_hash)

        monkeypatch.setattr(user_store, "update_password_hash", spy)

        credentials.verify("old@example.com", "secret1")
        migrated = user_store.get_by_email("old@example.com").password_hash
        credentials.verify("old@example.com", "secret1")

        assert len(rewrites) == 1
        assert user_store.get_by_email("old@example.com").password_hash == migrated

    def test_legacy_wrong_password_is_rejected_and_not_migrated(self, user_store, credentials, make_user) -> None:
        legacy = legacy_hash("secret1")
        uid = make_user(user_store, "old@example.com", password_hash=legacy)
        with pytest.raises(InvalidCredentials):
            credentials.verify("old@example.com", "secret2")
        assert user_store.get_by_id(uid).password_hash == legacy


class TestRegister:
    def test_register_creates_customer_with_bcrypt(self, user_store, credentials, make_user) -> None:
        account = credentials.register("New@Example.com", "secret1", display_name="Newbie")
        stored = user_store.get_by_id(account.id)
        assert stored.email == "new@example.com"
        assert stored.password_hash.startswith("$2")
        assert stored.roles == {"customer"}
        assert stored.display_name == "Newbie"

    def test_duplicate_email_is_conflict_not_invalid_credentials(self, user_store, credentials, make_user) -> None:
        make_user(user_store, "ann@example.com", "secret1")
        with pytest.raises(Conflict):
            credentials.register("ANN@example.com", "secret1")

    def test_concurrent_duplicate_caught_by_unique_constraint(self, user_store, credentials, make_user, monkeypatch) -> None:
        """If the pre-check misses a racing insert, IntegrityError still becomes Conflict."""
        make_user(user_store, "ann@example.com", "secret1")
        monkeypatch.setattr(user_store, "get_by_email", lambda email: None)
        with pytest.raises(Conflict):
            credentials.register("ann@example.com", "other-pass")


class TestChangePassword:
    def test_change_password_requires_current(self, user_store, credentials, make_user) -> None:
        uid = make_user(user_store, "ann@example.com", "secret1")
        with pytest.raises(InvalidCredentials):
            credentials.change_password(uid, "wrong", "secret2")
        credentials.change_password(uid, "secret1", "secret2")
        assert credentials.verify("ann@example.com", "secret2").id == uid
        with pytest.raises(InvalidCredentials):
            credentials.verify("ann@example.com", "secret1")
