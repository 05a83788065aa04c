"""
Safety Check Workflow - targeted wellbeing prompts to one partner.

A check is open until the partner responds; responding closes it for good.
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from haven.core.crisis.errors import AlreadyResolvedError, RecordNotFoundError
from haven.core.models import SafetyCheck, SafetyCheckType
from haven.core.timeutils import utcnow

logger = logging.getLogger(__name__)


DEFAULT_MESSAGES = {
    SafetyCheckType.DISENGAGEMENT: (
        "Hey, we noticed you haven't checked in for over 48 hours. "
        "Just checking in - how are you doing?"
    ),
    SafetyCheckType.SUSTAINED_RED_ZONE: (
        "You've been in the red zone for several days. "
        "Are you safe right now? Let us know how you're doing."
    ),
    SafetyCheckType.HIGH_RISK_PATTERN: (
        "Some recent conversations looked really hard. "
        "We want to make sure you're okay - how are you feeling?"
    ),
}


class SafetyCheckService:
    """Create, answer and list safety checks."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        couple_id: UUID,
        target_user_id: UUID,
        check_type: SafetyCheckType,
        message: Optional[str] = None,
    ) -> SafetyCheck:
        """
        Open a new safety check for one partner.

        Args:
            couple_id: Couple the check belongs to
            target_user_id: Partner being checked on
            check_type: Reason for the check
            message: Prompt text; defaults to the catalog text for the type

        Returns:
            The flushed SafetyCheck
        """
        check = SafetyCheck(
            id=uuid4(),
            couple_id=couple_id,
            target_user_id=target_user_id,
            check_type=check_type,
            message=message or DEFAULT_MESSAGES[check_type],
            requires_escalation=False,
            created_at=utcnow(),
        )
        self.db.add(check)
        await self.db.flush()

        logger.info(
            f"Safety check {check.id} ({check_type.value}) opened for user "
            f"{target_user_id} in couple {couple_id}"
        )
        return check

    async def get(self, check_id: UUID) -> SafetyCheck:
        result = await self.db.execute(select(SafetyCheck).where(SafetyCheck.id == check_id))
        check = result.scalar_one_or_none()
        if check is None:
            raise RecordNotFoundError("SafetyCheck", check_id)
        return check

    async def respond(
        self,
        check_id: UUID,
        response: str,
        requires_escalation: bool = False,
    ) -> SafetyCheck:
        """
        Record the partner's answer and close the check.

        Raises:
            RecordNotFoundError: Unknown check
            AlreadyResolvedError: The check was already answered; the row is
                left untouched
        """
        check = await self.get(check_id)
        if not check.is_open:
            raise AlreadyResolvedError("SafetyCheck", check_id)

        check.response = response
        check.responded_at = utcnow()
        check.requires_escalation = requires_escalation
        await self.db.flush()

        if requires_escalation:
            logger.warning(
                f"Safety check {check_id} for couple {check.couple_id} requires escalation"
            )
        return check

    async def pending_for(self, user_id: UUID) -> list[SafetyCheck]:
        """Open checks targeting a user, newest first."""
        result = await self.db.execute(
            select(SafetyCheck)
            .where(SafetyCheck.target_user_id == user_id)
            .where(SafetyCheck.responded_at.is_(None))
            .order_by(SafetyCheck.created_at.desc())
        )
        return list(result.scalars().all())

    async def has_pending(
        self,
        couple_id: UUID,
        target_user_id: UUID,
        check_type: SafetyCheckType,
    ) -> bool:
        result = await self.db.execute(
            select(SafetyCheck.id)
            .where(SafetyCheck.couple_id == couple_id)
            .where(SafetyCheck.target_user_id == target_user_id)
            .where(SafetyCheck.check_type == check_type)
            .where(SafetyCheck.responded_at.is_(None))
            .limit(1)
        )
        return result.scalar_one_or_none() is not None
