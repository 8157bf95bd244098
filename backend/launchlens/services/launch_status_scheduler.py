"""Launch status scheduler.

WHAT:
    Periodically advances launch statuses as wall-clock time passes:
    upcoming -> active once start has passed, active -> completed once end
    has passed. Archived launches are never touched.

WHY:
    - Status is also re-derived on every direct read, but list views and
      analytics filter by the stored column, so it must converge on its own.
    - The update is two set-based statements and is idempotent, so no
      overlap protection is needed between ticks or between processes.
    - A failing tick is logged and reported to Sentry; the loop keeps going
      and the next tick self-heals.

SCHEDULE:
    - Immediately on startup, then every LAUNCH_STATUS_INTERVAL_SECONDS
      (default 300s) in the API process (LaunchStatusScheduler)
    - Or every 5 minutes as an ARQ cron job (workers/arq_worker.py)

REFERENCES:
    - launchlens/services/launch_service.py::derive_status
    - launchlens/workers/arq_worker.py
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..database import SessionLocal
from ..models import Launch, LaunchStatusEnum
from ..telemetry import capture_exception
from ..utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 300


# =============================================================================
# TICK
# =============================================================================

def advance_launch_statuses(db: Session, now: datetime) -> Dict[str, int]:
    """Bulk-advance statuses for every account. Safe to call arbitrarily often.

    Returns:
        {"activated": n, "completed": m}
    """
    activated = (
        db.query(Launch)
        .filter(
            Launch.status == LaunchStatusEnum.upcoming.value,
            Launch.start_date <= now,
        )
        .update(
            {Launch.status: LaunchStatusEnum.active.value, Launch.updated_at: now},
            synchronize_session=False,
        )
    )
    completed = (
        db.query(Launch)
        .filter(
            Launch.status == LaunchStatusEnum.active.value,
            Launch.end_date < now,
        )
        .update(
            {Launch.status: LaunchStatusEnum.completed.value, Launch.updated_at: now},
            synchronize_session=False,
        )
    )
    db.commit()

    if activated or completed:
        logger.info("[LAUNCH_STATUS] Activated %d, completed %d launches", activated, completed)
    return {"activated": activated, "completed": completed}


def run_launch_status_tick(
    session_factory: Callable[[], Session] = SessionLocal,
    clock: Clock = utcnow,
) -> Optional[Dict[str, int]]:
    """One tick with its own session. Never raises.

    Returns the counts, or None when the tick failed.
    """
    db = None
    try:
        db = session_factory()
        return advance_launch_statuses(db, clock())
    except Exception as e:
        logger.exception("[LAUNCH_STATUS] Tick failed: %s", e)
        capture_exception(e, extra={
            "operation": "advance_launch_statuses",
            "job": "launch_status",
        })
        if db is not None:
            try:
                db.rollback()
            except Exception:
                logger.exception("[LAUNCH_STATUS] Rollback after failed tick also failed")
        return None
    finally:
        if db is not None:
            try:
                db.close()
            except Exception:
                logger.exception("[LAUNCH_STATUS] Failed to close tick session")


# =============================================================================
# IN-PROCESS TICKING TASK
# =============================================================================

class LaunchStatusScheduler:
    """Asyncio task that runs a tick immediately, then on a fixed interval.

    Owned by the FastAPI lifespan. `stop()` cancels the task; tests call
    `tick()` directly instead of waiting on the interval.

    Usage:
        scheduler = LaunchStatusScheduler(interval_seconds=300)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        session_factory: Callable[[], Session] = SessionLocal,
        clock: Clock = utcnow,
    ):
        self.interval_seconds = interval_seconds
        self.session_factory = session_factory
        self.clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def tick(self) -> Optional[Dict[str, int]]:
        return run_launch_status_tick(self.session_factory, self.clock)

    async def _run(self) -> None:
        while True:
            try:
                # Sync DB work off the event loop
                await asyncio.to_thread(self.tick)
            except Exception:
                logger.exception("[LAUNCH_STATUS] Tick crashed; retrying after %ss", self.interval_seconds)
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        logger.info("[LAUNCH_STATUS] Scheduler started (interval=%ss)", self.interval_seconds)
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[LAUNCH_STATUS] Scheduler stopped")
