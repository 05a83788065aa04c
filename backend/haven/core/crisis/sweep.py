"""
Batch Sweep Driver - daily crisis scoring over all active couples.

One couple failing never aborts the sweep: each couple runs in its own
session and commits on its own, and errors are collected per couple.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from haven.core.config import settings
from haven.core.crisis.cooling_off import CoolingOffManager
from haven.core.crisis.notifier import InterventionNotifier
from haven.core.crisis.pipeline import CoupleOutcome, process_couple
from haven.core.models import Couple, CoupleStatus
from haven.core.timeutils import ensure_utc, utcnow

logger = structlog.get_logger(__name__)


@dataclass
class SweepFailure:
    couple_id: UUID
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"couple_id": str(self.couple_id), "error": self.error}


@dataclass
class SweepSummary:
    """Outcome of one sweep."""
    as_of: datetime
    outcomes: list[CoupleOutcome] = field(default_factory=list)
    failures: list[SweepFailure] = field(default_factory=list)
    expired_cooling_off: int = 0

    @property
    def processed_count(self) -> int:
        return len(self.outcomes)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.as_of.date().isoformat(),
            "processed_count": self.processed_count,
            "failed_count": self.failed_count,
            "per_couple": [o.to_dict() for o in self.outcomes],
            "failures": [f.to_dict() for f in self.failures],
        }


def _worker_count(
    session_factory: async_sessionmaker[AsyncSession],
    requested: Optional[int],
) -> int:
    bind = session_factory.kw.get("bind")
    # SQLite allows a single writer at a time
    if bind is not None and bind.dialect.name == "sqlite":
        return 1
    return max(1, requested or settings.CRISIS_SWEEP_CONCURRENCY)


async def active_couple_ids(db: AsyncSession) -> list[UUID]:
    result = await db.execute(
        select(Couple.id)
        .where(Couple.status == CoupleStatus.ACTIVE)
        .order_by(Couple.created_at)
    )
    return list(result.scalars().all())


async def run_sweep(
    session_factory: async_sessionmaker[AsyncSession],
    as_of: Optional[datetime] = None,
    concurrency: Optional[int] = None,
    notifier: Optional[InterventionNotifier] = None,
) -> SweepSummary:
    """
    Score every active couple once.

    Args:
        session_factory: Opens one session per couple
        as_of: End of the signal window (defaults to now)
        concurrency: Couples processed at once (default from settings)
        notifier: Notification client shared by all couples

    Returns:
        SweepSummary with per-couple outcomes and failures
    """
    as_of = ensure_utc(as_of) or utcnow()
    concurrency = _worker_count(session_factory, concurrency)
    notifier = notifier or InterventionNotifier()
    summary = SweepSummary(as_of=as_of)

    async with session_factory() as db:
        # Periods still running in real time stay active on a forward-dated sweep
        summary.expired_cooling_off = await CoolingOffManager(db).expire_stale(
            now=min(as_of, utcnow())
        )
        couple_ids = await active_couple_ids(db)
        await db.commit()

    logger.info(
        "crisis_sweep_started",
        couples=len(couple_ids),
        concurrency=concurrency,
        as_of=as_of.isoformat(),
    )

    semaphore = asyncio.Semaphore(concurrency)

    async def _process(couple_id: UUID) -> None:
        log = logger.bind(couple_id=str(couple_id))
        async with semaphore:
            try:
                outcome = await process_couple(
                    session_factory,
                    couple_id,
                    as_of=as_of,
                    notifier=notifier,
                )
            except Exception as e:
                log.exception("crisis_sweep_couple_failed", error=str(e))
                summary.failures.append(SweepFailure(couple_id=couple_id, error=str(e)))
                return
        summary.outcomes.append(outcome)

    await asyncio.gather(*(_process(cid) for cid in couple_ids))

    if summary.failures:
        logger.error(
            "crisis_sweep_completed_with_failures",
            processed=summary.processed_count,
            failed=summary.failed_count,
        )
    else:
        logger.info("crisis_sweep_completed", processed=summary.processed_count)
    return summary
