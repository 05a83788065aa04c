"""
Crisis pipeline - one couple, end to end.

    aggregate -> calculate -> record score -> evaluate rules -> commit -> notify

Both the batch sweep and on-demand recompute run through process_couple(),
so the two paths share every downstream component. Each call owns its
session and commits once; a failure leaves nothing behind for the couple.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from haven.core.crisis.cooling_off import CoolingOffManager
from haven.core.crisis.errors import CoupleNotFoundError, CrisisError, CrisisStorageError
from haven.core.crisis.interventions import InterventionRuleEngine
from haven.core.crisis.notifier import InterventionNotifier
from haven.core.crisis.score_store import ScoreStore
from haven.core.crisis.scoring import calculate
from haven.core.crisis.signals import SignalAggregator
from haven.core.models import Couple, CrisisIntervention, InterventionType, Severity

logger = structlog.get_logger(__name__)


@dataclass
class CoupleOutcome:
    """What one pipeline run produced for a couple."""
    couple_id: UUID
    score: int
    severity: Severity
    score_id: UUID
    interventions: list[InterventionType] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "couple_id": str(self.couple_id),
            "score": self.score,
            "severity": self.severity.value,
            "interventions": [t.value for t in self.interventions],
        }


@dataclass
class PipelineRun:
    outcome: CoupleOutcome
    fired: list[CrisisIntervention]


async def run_couple_pipeline(
    db: AsyncSession,
    couple: Couple,
    as_of: Optional[datetime] = None,
) -> PipelineRun:
    """
    Score a couple and fire interventions inside the caller's session.

    Does not commit.
    """
    signals = await SignalAggregator(db).collect(couple, as_of=as_of)
    calculation = calculate(signals)
    score = await ScoreStore(db).record(couple.id, signals, calculation, as_of=as_of)
    fired = await InterventionRuleEngine(db).evaluate(score, signals)

    outcome = CoupleOutcome(
        couple_id=couple.id,
        score=calculation.score,
        severity=calculation.severity,
        score_id=score.id,
        interventions=[i.intervention_type for i in fired],
    )
    return PipelineRun(outcome=outcome, fired=fired)


async def process_couple(
    session_factory: async_sessionmaker[AsyncSession],
    couple_id: UUID,
    as_of: Optional[datetime] = None,
    notifier: Optional[InterventionNotifier] = None,
) -> CoupleOutcome:
    """
    Run the pipeline for one couple in its own session and commit.

    Notifications go out only after the commit succeeds.

    Raises:
        CoupleNotFoundError: No couple with that id
    """
    async with session_factory() as db:
        couple = await db.get(Couple, couple_id)
        if couple is None:
            raise CoupleNotFoundError(couple_id)

        try:
            run = await run_couple_pipeline(db, couple, as_of=as_of)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    if run.fired:
        notifier = notifier or InterventionNotifier()
        for intervention in run.fired:
            await notifier.notify_intervention(couple, intervention)

    logger.info(
        "couple_scored",
        couple_id=str(couple_id),
        score=run.outcome.score,
        severity=run.outcome.severity.value,
        interventions=[t.value for t in run.outcome.interventions],
    )
    return run.outcome


async def recompute_couple(
    session_factory: async_sessionmaker[AsyncSession],
    couple_id: UUID,
    as_of: Optional[datetime] = None,
    notifier: Optional[InterventionNotifier] = None,
) -> CoupleOutcome:
    """
    On-demand recompute for one couple.

    Raises:
        CoupleNotFoundError: No couple with that id
        CrisisStorageError: The store failed; safe to retry
    """
    try:
        return await process_couple(session_factory, couple_id, as_of=as_of, notifier=notifier)
    except SQLAlchemyError as e:
        logger.error("crisis_recompute_failed", couple_id=str(couple_id), error=str(e))
        raise CrisisStorageError(f"Crisis score computation failed: {e}", couple_id) from e


# ==========================================================================
# Entry points
# ==========================================================================

@dataclass
class ScoreResult:
    """Either a pipeline outcome or a structured failure."""
    couple_id: UUID
    outcome: Optional[CoupleOutcome] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    retryable: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome is not None

    def score_or(self, default: int = 0) -> int:
        return self.outcome.score if self.outcome is not None else default


async def try_compute_score(
    session_factory: async_sessionmaker[AsyncSession],
    couple_id: UUID,
    as_of: Optional[datetime] = None,
    notifier: Optional[InterventionNotifier] = None,
) -> ScoreResult:
    """Recompute a couple and report failure as data instead of raising."""
    try:
        outcome = await recompute_couple(session_factory, couple_id, as_of=as_of, notifier=notifier)
    except CrisisError as e:
        return ScoreResult(
            couple_id=couple_id,
            error=str(e),
            error_type=type(e).__name__,
            retryable=e.retryable,
        )
    except Exception as e:
        logger.exception("crisis_score_unexpected_error", couple_id=str(couple_id))
        return ScoreResult(couple_id=couple_id, error=str(e), error_type=type(e).__name__)
    return ScoreResult(couple_id=couple_id, outcome=outcome)


async def compute_score(
    session_factory: async_sessionmaker[AsyncSession],
    couple_id: UUID,
) -> int:
    """
    Crisis score for a couple in [0, 100].

    Returns 0 on any failure; use try_compute_score() to tell a failure
    apart from a genuinely calm couple.
    """
    result = await try_compute_score(session_factory, couple_id)
    if not result.ok:
        logger.warning(
            "crisis_score_defaulted",
            couple_id=str(couple_id),
            error=result.error,
            error_type=result.error_type,
        )
    return result.score_or(0)


async def is_in_cooling_off(
    session_factory: async_sessionmaker[AsyncSession],
    couple_id: UUID,
) -> bool:
    """True while the couple has a live cooling-off period."""
    async with session_factory() as db:
        return await CoolingOffManager(db).is_active(couple_id)
