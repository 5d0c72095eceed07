"""
tests/integration/test_refresh_token_store.py — The refresh-token store and
expiry purge against a real database (SQLite by default).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from sessionguard.app.errors import DuplicateToken, ExpiredRefreshToken
from sessionguard.app.extensions import db
from sessionguard.app.models.refresh_token import RefreshToken
from sessionguard.app.models.user import User
from sessionguard.app.services import auth_service
from sessionguard.app.services.expiry_sweeper import ExpirySweeper
from sessionguard.app.services.refresh_token_store import SqlAlchemyRefreshTokenStore, hash_token


def _now() -> datetime:
    return datetime.now(timezone.utc)


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield
        db.session.rollback()


def _make_user(username: str) -> int:
    result = auth_service.register_user(
        email=f"{username}@test.com",
        username=username,
        password="Password1",
        first_name=username.capitalize(),
        last_name="Tester",
        session=db.session,
    )
    db.session.commit()
    return result["user"]["id"]


@pytest.fixture
def store(ctx) -> SqlAlchemyRefreshTokenStore:
    return SqlAlchemyRefreshTokenStore(db.session)


class TestCreateAndFind:

    def test_create_then_find_by_raw_token(self, store):
        user_id = _make_user("alice")
        store.create(user_id, "raw-1", _now() + timedelta(days=1), ip_address="10.0.0.1")
        db.session.commit()

        record = store.find_by_token("raw-1")
        assert record is not None
        assert record.user_id == user_id
        assert record.user.username == "alice"
        assert record.is_revoked is False
        assert record.ip_address == "10.0.0.1"

    def test_only_the_digest_is_persisted(self, store):
        user_id = _make_user("alice")
        store.create(user_id, "raw-secret", _now() + timedelta(days=1))
        db.session.commit()

        stored = db.session.execute(db.select(RefreshToken.token)).scalars().all()
        assert stored == [hash_token("raw-secret")]

    def test_find_unknown_token_returns_none(self, store):
        assert store.find_by_token("nope") is None

    def test_duplicate_token_raises_and_keeps_outer_transaction(self, store):
        user_id = _make_user("alice")
        store.create(user_id, "same", _now() + timedelta(days=1))
        store.create(user_id, "other", _now() + timedelta(days=1))

        with pytest.raises(DuplicateToken):
            store.create(user_id, "same", _now() + timedelta(days=1))

        db.session.commit()
        assert len(store.find_all_by_user(user_id)) == 2

    def test_find_all_by_user_is_scoped(self, store):
        alice = _make_user("alice")
        bob = _make_user("bob")
        store.create(alice, "a1", _now() + timedelta(days=1))
        store.create(alice, "a2", _now() + timedelta(days=1))
        store.create(bob, "b1", _now() + timedelta(days=1))
        db.session.commit()

        assert {r.token for r in store.find_all_by_user(alice)} == {hash_token("a1"), hash_token("a2")}
        assert store.find_all_by_user(9999) == []


class TestRevoke:

    def test_revoke_is_terminal_and_repeatable(self, store):
        user_id = _make_user("alice")
        store.create(user_id, "raw", _now() + timedelta(days=1))
        db.session.commit()

        assert store.revoke("raw") is True
        assert store.revoke("raw") is True
        db.session.commit()
        db.session.expire_all()

        assert store.find_by_token("raw").is_revoked is True

    def test_revoke_unknown_returns_false(self, store):
        assert store.revoke("never-issued") is False

    def test_revoke_all_leaves_other_users_alone(self, store):
        alice = _make_user("alice")
        bob = _make_user("bob")
        store.create(alice, "a1", _now() + timedelta(days=1))
        store.create(alice, "a2", _now() - timedelta(days=1))
        store.create(bob, "b1", _now() + timedelta(days=1))
        db.session.commit()

        assert store.revoke_all_for_user(alice) is True
        db.session.commit()
        db.session.expire_all()

        assert all(r.is_revoked for r in store.find_all_by_user(alice))
        assert store.find_by_token("b1").is_revoked is False

    def test_revoke_all_without_sessions_returns_false(self, store):
        assert store.revoke_all_for_user(_make_user("alice")) is False


class TestDeleteExpired:

    def test_deletes_strictly_before_now_and_is_idempotent(self, store):
        user_id = _make_user("alice")
        now = _now().replace(microsecond=0)
        store.create(user_id, "old", now - timedelta(seconds=1))
        store.create(user_id, "boundary", now)
        store.create(user_id, "fresh", now + timedelta(days=1))
        db.session.commit()

        assert store.delete_expired(now) == 1
        assert store.delete_expired(now) == 0
        db.session.commit()

        assert store.find_by_token("old") is None
        assert store.find_by_token("boundary") is not None
        assert store.find_by_token("fresh") is not None

    def test_revoked_but_unexpired_records_survive(self, store):
        user_id = _make_user("alice")
        store.create(user_id, "revoked", _now() + timedelta(days=1))
        store.revoke("revoked")
        db.session.commit()

        assert store.delete_expired(_now()) == 0

    def test_deleting_a_user_cascades_to_tokens(self, store):
        user_id = _make_user("alice")
        store.create(user_id, "raw", _now() + timedelta(days=1))
        db.session.commit()

        db.session.delete(db.session.get(User, user_id))
        db.session.commit()

        assert db.session.execute(db.select(RefreshToken)).scalars().all() == []


class TestExpiryScenario:

    def test_expired_session_is_rejected_then_purged(self, ctx):
        user_id = _make_user("alice")
        manager = auth_service.build_session_manager(db.session)
        manager.store.create(user_id, "late", _now() - timedelta(seconds=1))
        db.session.commit()

        with pytest.raises(ExpiredRefreshToken):
            manager.validate("late")

        assert manager.purge_expired() == 1
        db.session.commit()
        assert manager.store.find_by_token("late") is None

    def test_sweeper_run_once_against_database(self, app):
        with app.app_context():
            user_id = _make_user("alice")
            store = SqlAlchemyRefreshTokenStore(db.session)
            store.create(user_id, "gone", _now() - timedelta(hours=1))
            store.create(user_id, "kept", _now() + timedelta(hours=1))
            db.session.commit()

        sweeper = ExpirySweeper(app, {"hourly": 3600})
        assert sweeper.run_once("hourly") == 1
        assert sweeper.run_once("hourly") == 0

        with app.app_context():
            store = SqlAlchemyRefreshTokenStore(db.session)
            assert store.find_by_token("gone") is None
            assert store.find_by_token("kept") is not None
