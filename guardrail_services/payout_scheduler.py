"""
PayoutScheduler -- in-process polling loop for income payouts.

Contract:
    Every ``tick_interval_seconds`` opens a session, runs
    ``EarnService.process_due_payouts`` and commits.  ``tick()`` is public
    so a cron-style caller (scripts/run_payout_sweep.py) or a test can run
    exactly one sweep.

Invariants enforced:
    - One session and one commit per tick; a tick that fails rolls back
      and is logged, and the loop keeps running.
    - Graceful shutdown: ``stop()`` signals the loop and waits for the
      current tick to finish.
"""

from __future__ import annotations

import threading
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from guardrail_kernel.logging_config import get_logger
from guardrail_services.earn import EarnService, PayoutSweepResult

logger = get_logger("services.payout_scheduler")


class PayoutScheduler:
    """Background thread that sweeps due income streams.

    Non-goals:
        - NOT a distributed scheduler (no leader election).
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        earn_factory: Callable[[Session], EarnService],
        organization_id: UUID | None = None,
        tick_interval_seconds: int = 3600,
    ):
        self._session_factory = session_factory
        self._earn_factory = earn_factory
        self._organization_id = organization_id
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def tick(self) -> PayoutSweepResult | None:
        """Run one sweep.  Returns None when the sweep itself failed."""
        session = self._session_factory()
        try:
            result = self._earn_factory(session).process_due_payouts(self._organization_id)
            session.commit()
            return result
        except Exception:
            session.rollback()
            logger.exception("payout_tick_failed")
            return None
        finally:
            session.close()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="payout-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("payout_scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("payout_scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._tick_interval)
