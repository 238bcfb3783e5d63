"""Audit progress tracking with throttled persistence."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from config import settings
from services.scoring import round_half_up

logger = logging.getLogger(__name__)

MAX_IN_FLIGHT_PERCENT = 99
SUCCESS_MESSAGE = "Audit completed successfully"
FAILURE_MESSAGE = "Audit failed"


def should_persist_progress(
    last_written_percent: Optional[int],
    new_percent: int,
    seconds_since_write: float,
    step_percent: int = 5,
    interval_seconds: float = 5.0,
) -> bool:
    """Write when the percent enters a higher step band or the last write is stale."""
    if last_written_percent is None:
        return True
    if new_percent // step_percent > last_written_percent // step_percent:
        return True
    return seconds_since_write >= interval_seconds


def step_percent(step: int, total_steps: int) -> int:
    if total_steps <= 0:
        return 0
    return min(round_half_up(step / total_steps * 100), MAX_IN_FLIGHT_PERCENT)


class ProgressTracker:
    """Owns the step counter of one audit and decides when progress hits the store.

    The percent never moves backwards and stays at or below 99 until
    ``complete(True)`` reports 100.
    """

    def __init__(
        self,
        store,
        audit_id: str,
        total_steps: int,
        clock: Callable[[], float] = time.monotonic,
        step_band: Optional[int] = None,
        interval_seconds: Optional[float] = None,
    ):
        self.store = store
        self.audit_id = audit_id
        self.total_steps = max(int(total_steps), 0)
        self.clock = clock
        self.step_band = step_band or settings.PROGRESS_WRITE_STEP_PERCENT
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else settings.PROGRESS_WRITE_INTERVAL_SECONDS
        )
        self.completed_steps = 0
        self.percent = 0
        self.category: Optional[str] = None
        self.message: Optional[str] = None
        self.started_at = datetime.now(timezone.utc)
        self._started_clock = clock()
        self._last_written_percent: Optional[int] = None
        self._last_write_at = self._started_clock
        self.writes = 0

    @property
    def elapsed_seconds(self) -> float:
        return max(self.clock() - self._started_clock, 0.0)

    async def update_progress(self, category: str, step: int, message: str) -> bool:
        """Record that ``step`` of the audit is starting; returns True when persisted."""
        self.completed_steps = max(self.completed_steps, step)
        self.percent = max(self.percent, step_percent(self.completed_steps, self.total_steps))
        self.category = category
        self.message = message

        now = self.clock()
        if not should_persist_progress(
            self._last_written_percent,
            self.percent,
            now - self._last_write_at,
            self.step_band,
            self.interval_seconds,
        ):
            return False
        await self.store.update_progress(self.audit_id, self.percent, message, category)
        self._last_written_percent = self.percent
        self._last_write_at = now
        self.writes += 1
        return True

    async def complete(self, success: bool, message: Optional[str] = None, error: Optional[str] = None) -> None:
        if success:
            self.percent = 100
        self.message = message or (SUCCESS_MESSAGE if success else FAILURE_MESSAGE)
        duration = round(self.elapsed_seconds, 3)
        await self.store.finish_audit(
            self.audit_id,
            status="completed" if success else "failed",
            progress=self.percent,
            message=self.message,
            completed_at=datetime.now(timezone.utc),
            duration_seconds=duration,
            error_message=error,
        )
        logger.info(
            "Audit %s %s at %s%% after %.2fs",
            self.audit_id,
            "completed" if success else "failed",
            self.percent,
            duration,
        )

    async def fail(self, exc: BaseException) -> None:
        detail = str(exc) or exc.__class__.__name__
        await self.complete(False, f"Error: {detail}", error=detail)
