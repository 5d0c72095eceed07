"""
Unit tests for the expiry sweeper. The purge call and the db session are
patched, so no database is touched; a bare Flask app supplies the context.
"""

from __future__ import annotations

import threading
from unittest.mock import MagicMock, patch

import pytest
from flask import Flask

from sessionguard.app.errors import StorageError
from sessionguard.app.services.expiry_sweeper import ExpirySweeper

MODULE = "sessionguard.app.services.expiry_sweeper"


@pytest.fixture
def flask_app():
    return Flask("sweeper-test")


def test_run_once_purges_and_commits(flask_app):
    with patch(f"{MODULE}.db") as db, \
            patch(f"{MODULE}.auth_service.purge_expired_tokens", return_value=3) as purge:
        deleted = ExpirySweeper(flask_app, {"hourly": 3600}).run_once("hourly")

    assert deleted == 3
    purge.assert_called_once_with(db.session)
    db.session.commit.assert_called_once()


def test_run_once_zero_deletions_is_not_an_error(flask_app):
    with patch(f"{MODULE}.db"), \
            patch(f"{MODULE}.auth_service.purge_expired_tokens", return_value=0):
        assert ExpirySweeper(flask_app, {"daily": 86400}).run_once("daily") == 0


def test_run_once_swallows_storage_error_and_rolls_back(flask_app, caplog):
    sweeper = ExpirySweeper(flask_app, {"hourly": 3600})
    with patch(f"{MODULE}.db") as db, \
            patch(f"{MODULE}.auth_service.purge_expired_tokens", side_effect=StorageError()):
        assert sweeper.run_once("hourly") is None

    db.session.rollback.assert_called_once()
    db.session.commit.assert_not_called()
    assert "hourly" in sweeper.last_run
    assert "Token sweep 'hourly' failed" in caplog.text


def test_start_runs_every_schedule_until_stopped(flask_app):
    seen: dict[str, threading.Event] = {"fast": threading.Event(), "faster": threading.Event()}

    def fake_run_once(self, label="manual"):
        seen[label].set()
        return 0

    sweeper = ExpirySweeper(flask_app, {"fast": 0.02, "faster": 0.01})
    with patch.object(ExpirySweeper, "run_once", fake_run_once):
        sweeper.start()
        try:
            assert sweeper.running
            assert seen["fast"].wait(2)
            assert seen["faster"].wait(2)
        finally:
            sweeper.stop()

    assert not sweeper.running


def test_start_twice_does_not_duplicate_threads(flask_app):
    sweeper = ExpirySweeper(flask_app, {"slow": 3600})
    sweeper.start()
    try:
        threads = list(sweeper._threads)
        sweeper.start()
        assert sweeper._threads == threads
    finally:
        sweeper.stop()


def test_failed_tick_does_not_stop_the_loop(flask_app):
    calls = []
    done = threading.Event()
    purge = MagicMock(side_effect=[StorageError(), 2, 0, 0, 0, 0, 0, 0, 0, 0])

    def counting_purge(session):
        calls.append(session)
        if len(calls) >= 2:
            done.set()
        return purge(session)

    sweeper = ExpirySweeper(flask_app, {"tick": 0.01})
    with patch(f"{MODULE}.db"), \
            patch(f"{MODULE}.auth_service.purge_expired_tokens", side_effect=counting_purge):
        sweeper.start()
        try:
            assert done.wait(2)
        finally:
            sweeper.stop()

    assert len(calls) >= 2
