"""
Unit tests for SqlAlchemyRefreshTokenStore with a mocked session.

Behaviour against a real database is covered in
tests/integration/test_refresh_token_store.py.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from sessionguard.app.errors import DuplicateToken, StorageError
from sessionguard.app.services.refresh_token_store import (
    SqlAlchemyRefreshTokenStore,
    as_utc,
    hash_token,
)


def _rowcount(session: MagicMock, count: int) -> None:
    session.execute.return_value.rowcount = count


def test_hash_token_is_sha256_hex():
    digest = hash_token("abc")
    assert digest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert len(digest) == 64


def test_as_utc_attaches_utc_to_naive_values():
    naive = datetime(2026, 1, 1, 12, 0)
    assert as_utc(naive) == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_as_utc_converts_other_offsets():
    plus_two = datetime(2026, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    assert as_utc(plus_two) == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_create_stores_digest_not_raw_token():
    session = MagicMock()
    store = SqlAlchemyRefreshTokenStore(session)
    expires_at = datetime.now(timezone.utc) + timedelta(days=1)

    record = store.create(user_id=3, token="raw-token", expires_at=expires_at, ip_address="1.2.3.4")

    session.begin_nested.assert_called_once()
    session.add.assert_called_once_with(record)
    assert record.token == hash_token("raw-token")
    assert record.user_id == 3
    assert record.is_revoked is False
    assert record.ip_address == "1.2.3.4"


def test_create_duplicate_raises_duplicate_token():
    session = MagicMock()
    session.begin_nested.return_value.__exit__.side_effect = IntegrityError("INSERT", {}, Exception("unique"))
    session.execute.return_value.scalar_one_or_none.return_value = object()

    with pytest.raises(DuplicateToken):
        SqlAlchemyRefreshTokenStore(session).create(
            user_id=3, token="raw", expires_at=datetime.now(timezone.utc),
        )


def test_create_other_integrity_error_propagates():
    session = MagicMock()
    session.begin_nested.return_value.__exit__.side_effect = IntegrityError("INSERT", {}, Exception("fk"))
    session.execute.return_value.scalar_one_or_none.return_value = None

    with pytest.raises(IntegrityError):
        SqlAlchemyRefreshTokenStore(session).create(
            user_id=999, token="raw", expires_at=datetime.now(timezone.utc),
        )


@pytest.mark.parametrize("count, expected", [(1, True), (0, False)])
def test_revoke_reports_whether_a_row_was_affected(count, expected):
    session = MagicMock()
    _rowcount(session, count)
    assert SqlAlchemyRefreshTokenStore(session).revoke("raw") is expected


@pytest.mark.parametrize("count, expected", [(3, True), (0, False)])
def test_revoke_all_reports_whether_any_row_was_affected(count, expected):
    session = MagicMock()
    _rowcount(session, count)
    assert SqlAlchemyRefreshTokenStore(session).revoke_all_for_user(1) is expected


def test_delete_expired_returns_count():
    session = MagicMock()
    _rowcount(session, 4)
    assert SqlAlchemyRefreshTokenStore(session).delete_expired(datetime.now(timezone.utc)) == 4


@pytest.mark.parametrize(
    "error",
    [
        OperationalError("SELECT", {}, Exception("server closed the connection")),
        PoolTimeoutError("QueuePool limit reached"),
    ],
)
def test_connectivity_failures_become_storage_error(error):
    session = MagicMock()
    session.execute.side_effect = error
    store = SqlAlchemyRefreshTokenStore(session)

    with pytest.raises(StorageError):
        store.find_by_token("raw")
    with pytest.raises(StorageError):
        store.revoke("raw")
    with pytest.raises(StorageError):
        store.delete_expired(datetime.now(timezone.utc))
