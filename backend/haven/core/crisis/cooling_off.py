"""
Cooling-Off State Machine - enforced communication pauses.

States: active -> completed | cancelled. Terminal states are final; a new
pause is always a new row.

Readers never trust the stored status alone: a period counts as active only
while status is active AND ends_at is still in the future. Overdue rows are
flipped to completed by expire_stale() during the daily sweep, or lazily
when a new period is started.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from haven.core.config import settings
from haven.core.crisis.errors import (
    AlreadyResolvedError,
    CoolingOffActiveError,
    RecordNotFoundError,
)
from haven.core.models import CoolingOffPeriod, CoolingOffStatus
from haven.core.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class CoolingOffManager:
    """Start, end and query cooling-off periods."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def start(
        self,
        couple_id: UUID,
        initiated_by: UUID,
        reason: str = "",
        duration_hours: Optional[int] = None,
    ) -> CoolingOffPeriod:
        """
        Start a cooling-off period.

        Args:
            couple_id: Couple to pause
            initiated_by: Partner (or system user) starting the pause
            reason: Free-text reason
            duration_hours: Length of the pause (default from settings)

        Returns:
            The new active period

        Raises:
            CoolingOffActiveError: A live period already exists
        """
        if duration_hours is None:
            duration_hours = settings.COOLING_OFF_DEFAULT_HOURS
        if duration_hours <= 0:
            raise ValueError("duration_hours must be positive")

        now = utcnow()
        await self.expire_stale(now=now, couple_id=couple_id)

        current = await self.active_for(couple_id, now=now)
        if current is not None:
            raise CoolingOffActiveError(couple_id, current.id)

        period = CoolingOffPeriod(
            id=uuid4(),
            couple_id=couple_id,
            initiated_by=initiated_by,
            reason=reason or "",
            duration_hours=duration_hours,
            started_at=now,
            ends_at=now + timedelta(hours=duration_hours),
            status=CoolingOffStatus.ACTIVE,
        )

        # The partial unique index on active rows settles concurrent starts
        try:
            async with self.db.begin_nested():
                self.db.add(period)
                await self.db.flush()
        except IntegrityError as e:
            raise CoolingOffActiveError(couple_id) from e

        logger.info(
            f"Cooling-off {period.id} started for couple {couple_id} "
            f"({duration_hours}h, by {initiated_by})"
        )
        return period

    async def get(self, period_id: UUID) -> CoolingOffPeriod:
        result = await self.db.execute(
            select(CoolingOffPeriod).where(CoolingOffPeriod.id == period_id)
        )
        period = result.scalar_one_or_none()
        if period is None:
            raise RecordNotFoundError("CoolingOffPeriod", period_id)
        return period

    async def end_early(self, period_id: UUID, reason: Optional[str] = None) -> CoolingOffPeriod:
        """
        End a running period before ends_at.

        Raises:
            AlreadyResolvedError: Period is completed, cancelled or already
                past its end time
        """
        period = await self._get_live(period_id)
        period.status = CoolingOffStatus.COMPLETED
        period.early_ended_at = utcnow()
        period.early_end_reason = reason or ""
        await self.db.flush()

        logger.info(f"Cooling-off {period_id} ended early for couple {period.couple_id}")
        return period

    async def cancel(self, period_id: UUID, reason: Optional[str] = None) -> CoolingOffPeriod:
        """Withdraw a running period (active -> cancelled)."""
        period = await self._get_live(period_id)
        period.status = CoolingOffStatus.CANCELLED
        period.early_ended_at = utcnow()
        period.early_end_reason = reason or ""
        await self.db.flush()

        logger.info(f"Cooling-off {period_id} cancelled for couple {period.couple_id}")
        return period

    async def active_for(
        self,
        couple_id: UUID,
        now: Optional[datetime] = None,
    ) -> Optional[CoolingOffPeriod]:
        """The live period for a couple, if any."""
        now = now or utcnow()
        result = await self.db.execute(
            select(CoolingOffPeriod)
            .where(CoolingOffPeriod.couple_id == couple_id)
            .where(CoolingOffPeriod.status == CoolingOffStatus.ACTIVE)
            .where(CoolingOffPeriod.ends_at > now)
            .order_by(CoolingOffPeriod.started_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def is_active(self, couple_id: UUID, now: Optional[datetime] = None) -> bool:
        return await self.active_for(couple_id, now=now) is not None

    async def expire_stale(
        self,
        now: Optional[datetime] = None,
        couple_id: Optional[UUID] = None,
    ) -> int:
        """
        Close active periods whose end time has passed.

        Args:
            now: Reference time (defaults to now)
            couple_id: Restrict to one couple

        Returns:
            Number of periods completed
        """
        now = now or utcnow()
        stmt = (
            update(CoolingOffPeriod)
            .where(CoolingOffPeriod.status == CoolingOffStatus.ACTIVE)
            .where(CoolingOffPeriod.ends_at <= now)
            .values(status=CoolingOffStatus.COMPLETED)
            .execution_options(synchronize_session=False)
        )
        if couple_id is not None:
            stmt = stmt.where(CoolingOffPeriod.couple_id == couple_id)

        result = await self.db.execute(stmt)
        expired = result.rowcount or 0
        if expired:
            logger.info(f"Completed {expired} expired cooling-off period(s)")
        return expired

    async def _get_live(self, period_id: UUID) -> CoolingOffPeriod:
        period = await self.get(period_id)
        if period.status != CoolingOffStatus.ACTIVE or ensure_utc(period.ends_at) <= utcnow():
            raise AlreadyResolvedError("CoolingOffPeriod", period_id)
        return period
