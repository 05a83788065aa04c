"""
Score Store - append-only crisis score timeseries.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from haven.core.crisis.scoring import ScoreCalculation
from haven.core.crisis.signals import Signals
from haven.core.models import CrisisScore
from haven.core.timeutils import ensure_utc, utcnow


class ScoreStore:
    """Reads and appends CrisisScore rows. Rows are never updated."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        couple_id: UUID,
        signals: Signals,
        calculation: ScoreCalculation,
        as_of: Optional[datetime] = None,
    ) -> CrisisScore:
        """
        Insert a new score row with the full signal breakdown.

        Args:
            couple_id: Couple the score belongs to
            signals: Aggregated signals the score was computed from
            calculation: Score and severity
            as_of: End of the signal window; stamps calculated_at (capped at
                now) so back-dated runs never outrank a current score

        Returns:
            The flushed CrisisScore
        """
        now = utcnow()
        as_of = ensure_utc(as_of) or now
        factors = signals.to_factors()
        factors["as_of"] = as_of.isoformat()

        score = CrisisScore(
            id=uuid4(),
            couple_id=couple_id,
            score=calculation.score,
            severity=calculation.severity,
            red_zone_days=signals.red_zone_days,
            high_risk_messages=signals.high_risk_messages,
            gottman_violations=signals.gottman_violations,
            disengagement_hours=signals.disengagement_hours,
            conflict_frequency=signals.conflict_frequency,
            factors=factors,
            calculated_at=min(as_of, now),
        )
        self.db.add(score)
        await self.db.flush()
        return score

    async def latest(self, couple_id: UUID) -> Optional[CrisisScore]:
        """Most recent score for a couple, or None."""
        result = await self.db.execute(
            select(CrisisScore)
            .where(CrisisScore.couple_id == couple_id)
            .order_by(CrisisScore.calculated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def history(self, couple_id: UUID, limit: int = 30) -> list[CrisisScore]:
        """Scores for a couple, newest first."""
        result = await self.db.execute(
            select(CrisisScore)
            .where(CrisisScore.couple_id == couple_id)
            .order_by(CrisisScore.calculated_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
