"""
Signal Aggregator - trailing-window behavioral signals for one couple.

Reads check-ins, tone-analysed messages and conflicts; never writes.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from haven.core.config import settings
from haven.core.models import (
    CheckIn,
    Conflict,
    Couple,
    CoupleMessage,
    CrisisScore,
    NervousSystemZone,
)
from haven.core.timeutils import ensure_utc, utcnow


@dataclass(frozen=True)
class Signals:
    """
    Input vector for the score calculator.

    mutual_red_zone is true when both partners logged a red check-in inside
    the window. disengaged_user_id names the partner silent longest whenever
    disengagement_hours is non-zero.
    """

    red_zone_days: int = 0
    high_risk_messages: int = 0
    gottman_violations: int = 0
    disengagement_hours: float = 0.0
    conflict_frequency: int = 0
    mutual_red_zone: bool = False
    disengaged_user_id: Optional[UUID] = None

    def to_factors(self) -> dict[str, Any]:
        """JSON-safe breakdown stored alongside each score."""
        data = asdict(self)
        if self.disengaged_user_id is not None:
            data["disengaged_user_id"] = str(self.disengaged_user_id)
        return data

    @classmethod
    def from_score(cls, score: "CrisisScore") -> "Signals":
        """Rebuild the signal vector persisted with a score."""
        factors = score.factors or {}
        disengaged = factors.get("disengaged_user_id")
        return cls(
            red_zone_days=score.red_zone_days,
            high_risk_messages=score.high_risk_messages,
            gottman_violations=score.gottman_violations,
            disengagement_hours=score.disengagement_hours,
            conflict_frequency=score.conflict_frequency,
            mutual_red_zone=bool(factors.get("mutual_red_zone", False)),
            disengaged_user_id=UUID(disengaged) if disengaged else None,
        )


EMPTY_SIGNALS = Signals()


class SignalAggregator:
    """
    Computes the five crisis signals for a couple.

    Window:
    - red zone days, messages and conflicts: trailing `window_days`
    - disengagement: time since each partner's last check-in, zero while
      both partners checked in within `disengagement_grace_hours`
    """

    HIGH_RISK_LEVELS = frozenset({"medium", "high"})

    def __init__(
        self,
        db: AsyncSession,
        window_days: Optional[int] = None,
        disengagement_grace_hours: Optional[int] = None,
    ):
        self.db = db
        self.window_days = window_days or settings.CRISIS_WINDOW_DAYS
        self.disengagement_grace_hours = (
            disengagement_grace_hours
            if disengagement_grace_hours is not None
            else settings.CRISIS_DISENGAGEMENT_GRACE_HOURS
        )

    async def collect(self, couple: Couple, as_of: Optional[datetime] = None) -> Signals:
        """
        Aggregate signals for a couple as of a point in time.

        Args:
            couple: The couple to score
            as_of: End of the trailing window (defaults to now)

        Returns:
            Signals; all zero when the couple has no partner data
        """
        partners = couple.partner_ids
        if not partners:
            return EMPTY_SIGNALS

        as_of = ensure_utc(as_of) or utcnow()
        window_start = as_of - timedelta(days=self.window_days)

        red_zone_days, red_partners = await self._red_zone(partners, window_start, as_of)
        high_risk, violations = await self._message_signals(couple.id, window_start, as_of)
        hours, disengaged = await self._disengagement(partners, as_of)
        conflicts = await self._conflict_count(couple.id, window_start, as_of)

        return Signals(
            red_zone_days=red_zone_days,
            high_risk_messages=high_risk,
            gottman_violations=violations,
            disengagement_hours=hours,
            conflict_frequency=conflicts,
            mutual_red_zone=len(partners) == 2 and red_partners >= set(partners),
            disengaged_user_id=disengaged,
        )

    async def _red_zone(
        self,
        partners: list[UUID],
        window_start: datetime,
        as_of: datetime,
    ) -> tuple[int, set[UUID]]:
        """Distinct red calendar days (either partner) and who was red."""
        result = await self.db.execute(
            select(CheckIn.user_id, CheckIn.created_at)
            .where(CheckIn.user_id.in_(partners))
            .where(CheckIn.nervous_system_zone == NervousSystemZone.RED)
            .where(CheckIn.created_at >= window_start)
            .where(CheckIn.created_at <= as_of)
        )
        days: set = set()
        users: set[UUID] = set()
        for user_id, created_at in result.all():
            days.add(ensure_utc(created_at).date())
            users.add(user_id)
        return len(days), users

    async def _message_signals(
        self,
        couple_id: UUID,
        window_start: datetime,
        as_of: datetime,
    ) -> tuple[int, int]:
        """High-risk message count and summed Gottman warning tags."""
        result = await self.db.execute(
            select(CoupleMessage.tone_analysis)
            .where(CoupleMessage.couple_id == couple_id)
            .where(CoupleMessage.created_at >= window_start)
            .where(CoupleMessage.created_at <= as_of)
        )
        high_risk = 0
        violations = 0
        for analysis in result.scalars().all():
            if not isinstance(analysis, dict):
                continue
            if str(analysis.get("riskLevel", "")).lower() in self.HIGH_RISK_LEVELS:
                high_risk += 1
            warnings = analysis.get("gottmanWarnings")
            if isinstance(warnings, list):
                violations += len(warnings)
        return high_risk, violations

    async def _disengagement(
        self,
        partners: list[UUID],
        as_of: datetime,
    ) -> tuple[float, Optional[UUID]]:
        """Hours since the quietest partner's last check-in."""
        result = await self.db.execute(
            select(CheckIn.user_id, func.max(CheckIn.created_at))
            .where(CheckIn.user_id.in_(partners))
            .where(CheckIn.created_at <= as_of)
            .group_by(CheckIn.user_id)
        )

        # Partners who never checked in have no baseline and are skipped
        silent_hours = {
            user_id: max((as_of - ensure_utc(last)).total_seconds() / 3600, 0.0)
            for user_id, last in result.all()
            if last is not None
        }
        if not silent_hours:
            return 0.0, None

        user_id, hours = max(silent_hours.items(), key=lambda item: item[1])
        if hours <= self.disengagement_grace_hours:
            return 0.0, None
        return round(hours, 2), user_id

    async def _conflict_count(
        self,
        couple_id: UUID,
        window_start: datetime,
        as_of: datetime,
    ) -> int:
        result = await self.db.execute(
            select(func.count(Conflict.id))
            .where(Conflict.couple_id == couple_id)
            .where(Conflict.started_at >= window_start)
            .where(Conflict.started_at <= as_of)
        )
        return int(result.scalar_one())
