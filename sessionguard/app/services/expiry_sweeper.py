"""
services/expiry_sweeper.py — Periodic purge of expired refresh tokens.

One daemon thread per schedule (default: hourly and daily). The schedules
overlap on purpose and may run at the same moment: purge is idempotent, a
redundant run just deletes 0 rows.

A failed sweep is logged and skipped. Expired-but-undeleted tokens are still
rejected by SessionManager.validate, so a missed sweep only costs storage.
"""

from __future__ import annotations

import threading
import time

from flask import Flask

from sessionguard.app.extensions import db
from sessionguard.app.services import auth_service


class ExpirySweeper:

    def __init__(self, app: Flask, schedules: dict[str, int]) -> None:
        self.app = app
        self.schedules = dict(schedules)
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self.last_run: dict[str, float] = {}

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        if self.running:
            self.app.logger.warning("Expiry sweeper already running.")
            return

        self._stop.clear()
        self._threads = [
            threading.Thread(
                target=self._run_loop,
                args=(label, interval),
                name=f"token-sweeper-{label}",
                daemon=True,
            )
            for label, interval in self.schedules.items()
        ]
        for thread in self._threads:
            thread.start()
        self.app.logger.info("Expiry sweeper started: %s", self.schedules)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        self.app.logger.info("Expiry sweeper stopped.")

    def _run_loop(self, label: str, interval: int) -> None:
        # Event.wait doubles as the sleep and the shutdown signal.
        while not self._stop.wait(interval):
            self.run_once(label)

    def run_once(self, label: str = "manual") -> int | None:
        """
        One sweep in its own app context and session.
        Returns the number of deleted records, or None if the sweep failed.
        """
        with self.app.app_context():
            try:
                deleted = auth_service.purge_expired_tokens(db.session)
                db.session.commit()
            except Exception:
                db.session.rollback()
                self.app.logger.exception("Token sweep '%s' failed; will retry next interval.", label)
                return None
            finally:
                self.last_run[label] = time.monotonic()

        if deleted:
            self.app.logger.info("Token sweep '%s' removed %d expired refresh tokens.", label, deleted)
        return deleted
