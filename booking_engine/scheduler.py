from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from threading import Event, Thread
from typing import List, Optional

from .service import ReservationCoordinator

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    expired: List[str] = field(default_factory=list)
    no_shows: List[str] = field(default_factory=list)


class ExpirySweeper:
    """Background thread that periodically runs the booking sweeps."""

    def __init__(self, coordinator: ReservationCoordinator, interval_seconds: float = 60.0) -> None:
        self._coordinator = coordinator
        self._interval = interval_seconds
        self._stop = Event()
        self._thread: Optional[Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self, now: Optional[datetime] = None) -> SweepResult:
        result = SweepResult(
            expired=self._coordinator.expire_stale_pending(now),
            no_shows=self._coordinator.mark_no_shows(now),
        )
        if result.expired or result.no_shows:
            logger.info(
                "Sweep finished",
                extra={"expired": len(result.expired), "no_shows": len(result.no_shows)},
            )
        return result

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = Thread(target=self._loop, name="booking-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.run_once()
            except Exception:
                # keep the thread alive; the next tick retries
                logger.exception("Sweep crashed")
