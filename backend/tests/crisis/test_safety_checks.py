"""
Safety Check Workflow tests.
"""

from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from haven.core.crisis.errors import AlreadyResolvedError, RecordNotFoundError
from haven.core.crisis.safety_checks import DEFAULT_MESSAGES, SafetyCheckService
from haven.core.models import Couple, SafetyCheckType
from haven.core.timeutils import ensure_utc


class TestSafetyChecks:
    """Open -> responded, exactly once."""

    async def test_create_uses_catalog_message(self, db_session: AsyncSession, couple: Couple):
        check = await SafetyCheckService(db_session).create(
            couple.id, couple.partner_2_id, SafetyCheckType.DISENGAGEMENT
        )

        assert check.message == DEFAULT_MESSAGES[SafetyCheckType.DISENGAGEMENT]
        assert check.is_open
        assert check.requires_escalation is False

    async def test_create_with_custom_message(self, db_session: AsyncSession, couple: Couple):
        check = await SafetyCheckService(db_session).create(
            couple.id, couple.partner_1_id, SafetyCheckType.SUSTAINED_RED_ZONE, message="Are you okay?"
        )

        assert check.message == "Are you okay?"

    async def test_respond(self, db_session: AsyncSession, couple: Couple):
        service = SafetyCheckService(db_session)
        check = await service.create(couple.id, couple.partner_2_id, SafetyCheckType.DISENGAGEMENT)

        answered = await service.respond(check.id, "I'm fine, just busy", requires_escalation=False)
        await db_session.commit()

        assert answered.response == "I'm fine, just busy"
        assert answered.responded_at is not None
        assert not answered.is_open

    async def test_respond_twice_leaves_row_untouched(self, db_session: AsyncSession, couple: Couple):
        service = SafetyCheckService(db_session)
        check = await service.create(couple.id, couple.partner_2_id, SafetyCheckType.DISENGAGEMENT)
        await service.respond(check.id, "first answer")
        await db_session.commit()
        responded_at = check.responded_at

        with pytest.raises(AlreadyResolvedError):
            await service.respond(check.id, "second answer", requires_escalation=True)

        await db_session.refresh(check)
        assert check.response == "first answer"
        assert check.requires_escalation is False
        assert ensure_utc(check.responded_at) == ensure_utc(responded_at)

    async def test_escalation_flag(self, db_session: AsyncSession, couple: Couple):
        service = SafetyCheckService(db_session)
        check = await service.create(couple.id, couple.partner_2_id, SafetyCheckType.HIGH_RISK_PATTERN)

        answered = await service.respond(check.id, "Not safe", requires_escalation=True)

        assert answered.requires_escalation is True

    async def test_pending_for_user(self, db_session: AsyncSession, couple: Couple):
        service = SafetyCheckService(db_session)
        mine = await service.create(couple.id, couple.partner_2_id, SafetyCheckType.DISENGAGEMENT)
        answered = await service.create(couple.id, couple.partner_2_id, SafetyCheckType.SUSTAINED_RED_ZONE)
        await service.create(couple.id, couple.partner_1_id, SafetyCheckType.DISENGAGEMENT)
        await service.respond(answered.id, "ok")

        pending = await service.pending_for(couple.partner_2_id)

        assert [c.id for c in pending] == [mine.id]

    async def test_has_pending(self, db_session: AsyncSession, couple: Couple):
        service = SafetyCheckService(db_session)
        assert not await service.has_pending(couple.id, couple.partner_2_id, SafetyCheckType.DISENGAGEMENT)

        await service.create(couple.id, couple.partner_2_id, SafetyCheckType.DISENGAGEMENT)

        assert await service.has_pending(couple.id, couple.partner_2_id, SafetyCheckType.DISENGAGEMENT)
        assert not await service.has_pending(couple.id, couple.partner_2_id, SafetyCheckType.HIGH_RISK_PATTERN)

    async def test_respond_unknown(self, db_session: AsyncSession):
        with pytest.raises(RecordNotFoundError):
            await SafetyCheckService(db_session).respond(uuid4(), "hello")
