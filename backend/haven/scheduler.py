"""
Background scheduler for the daily crisis sweep.

Started from the app lifespan; one asyncio task per process.
"""

import asyncio
import logging
from typing import Optional

from haven.core.config import settings
from haven.core.crisis import run_sweep
from haven.core.database import get_session_factory

log = logging.getLogger(__name__)

# Let the app finish starting before the first sweep
STARTUP_DELAY_SECONDS = 60

_scheduler_task: Optional[asyncio.Task] = None


async def _run_sweep_once() -> Optional[dict]:
    try:
        summary = await run_sweep(get_session_factory())
    except Exception as e:
        log.exception(f"[SCHEDULER] Crisis sweep failed: {e}")
        return None

    log.info(
        f"[SCHEDULER] Crisis sweep complete: "
        f"processed={summary.processed_count}, failed={summary.failed_count}"
    )
    return summary.to_dict()


async def _scheduler_loop(startup_delay: float = STARTUP_DELAY_SECONDS) -> None:
    interval_seconds = settings.CRISIS_SWEEP_INTERVAL_HOURS * 3600

    log.info(
        f"[SCHEDULER] Starting crisis sweep scheduler: "
        f"interval={settings.CRISIS_SWEEP_INTERVAL_HOURS}h, "
        f"concurrency={settings.CRISIS_SWEEP_CONCURRENCY}"
    )

    try:
        await asyncio.sleep(startup_delay)
        while True:
            await _run_sweep_once()
            log.info(f"[SCHEDULER] Next sweep in {settings.CRISIS_SWEEP_INTERVAL_HOURS} hours")
            await asyncio.sleep(interval_seconds)
    except asyncio.CancelledError:
        log.info("[SCHEDULER] Scheduler cancelled, shutting down")
        raise


def start_scheduler() -> None:
    global _scheduler_task

    if not settings.CRISIS_SWEEP_ENABLED:
        log.info("[SCHEDULER] Crisis sweep scheduler is disabled (CRISIS_SWEEP_ENABLED=false)")
        return

    if _scheduler_task is not None:
        log.warning("[SCHEDULER] Scheduler already running")
        return

    _scheduler_task = asyncio.create_task(_scheduler_loop())
    log.info("[SCHEDULER] Crisis sweep scheduler started")


def stop_scheduler() -> None:
    global _scheduler_task

    if _scheduler_task is not None:
        _scheduler_task.cancel()
        _scheduler_task = None
        log.info("[SCHEDULER] Crisis sweep scheduler stopped")


def is_running() -> bool:
    return _scheduler_task is not None and not _scheduler_task.done()
