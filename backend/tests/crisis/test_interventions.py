"""
Intervention Rule Engine and Store tests.

Covers the idempotency guard: one open intervention per couple and type,
including when the existence check loses a race with another writer.
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from haven.core.crisis.errors import AlreadyResolvedError, RecordNotFoundError
from haven.core.crisis.interventions import (
    InterventionRuleEngine,
    InterventionStore,
    decide,
    resolve_intervention,
)
from haven.core.crisis.score_store import ScoreStore
from haven.core.crisis.scoring import calculate
from haven.core.crisis.signals import Signals
from haven.core.models import (
    CoolingOffPeriod,
    Couple,
    CrisisIntervention,
    InterventionAction,
    InterventionType,
    SafetyCheck,
    SafetyCheckType,
    Severity,
)


SCENARIO_CRITICAL = Signals(red_zone_days=4, high_risk_messages=2, gottman_violations=1, mutual_red_zone=True)


async def record(db: AsyncSession, couple: Couple, signals: Signals):
    return await ScoreStore(db).record(couple.id, signals, calculate(signals))


async def count_interventions(db: AsyncSession, couple: Couple, **filters) -> int:
    query = select(func.count(CrisisIntervention.id)).where(CrisisIntervention.couple_id == couple.id)
    for name, value in filters.items():
        query = query.where(getattr(CrisisIntervention, name) == value)
    return await db.scalar(query)


# ==========================================================================
# Rule Engine
# ==========================================================================

class TestRuleEngine:
    """Evaluating a fresh score."""

    async def test_critical_fires_hotline_and_cooling_off(self, db_session: AsyncSession, couple: Couple):
        score = await record(db_session, couple, SCENARIO_CRITICAL)

        fired = await InterventionRuleEngine(db_session).evaluate(score, SCENARIO_CRITICAL)
        await db_session.commit()

        assert {i.intervention_type for i in fired} == {
            InterventionType.CRISIS_HOTLINE,
            InterventionType.COOLING_OFF,
        }
        for intervention in fired:
            assert intervention.crisis_score_id == score.id
            assert intervention.severity == Severity.CRITICAL
            assert intervention.action_required is True
            assert intervention.is_open

    async def test_low_fires_nothing(self, db_session: AsyncSession, couple: Couple):
        score = await record(db_session, couple, Signals())

        fired = await InterventionRuleEngine(db_session).evaluate(score)

        assert fired == []
        assert await count_interventions(db_session, couple) == 0

    async def test_evaluate_is_idempotent_until_acknowledged(
        self, db_session: AsyncSession, couple: Couple
    ):
        engine = InterventionRuleEngine(db_session)

        first = await engine.evaluate(await record(db_session, couple, SCENARIO_CRITICAL), SCENARIO_CRITICAL)
        second = await engine.evaluate(await record(db_session, couple, SCENARIO_CRITICAL), SCENARIO_CRITICAL)
        await db_session.commit()

        assert len(first) == 2
        assert second == []
        assert await count_interventions(db_session, couple) == 2

    async def test_refires_after_acknowledgment(self, db_session: AsyncSession, couple: Couple):
        engine = InterventionRuleEngine(db_session)
        store = InterventionStore(db_session)
        signals = Signals(high_risk_messages=6)

        first = await engine.evaluate(await record(db_session, couple, signals), signals)
        await store.acknowledge(first[0].id, InterventionAction.DECLINED)
        again = await engine.evaluate(await record(db_session, couple, signals), signals)
        await db_session.commit()

        assert [i.intervention_type for i in again] == [InterventionType.AI_SESSION]
        assert await count_interventions(db_session, couple, intervention_type=InterventionType.AI_SESSION) == 2

    async def test_open_intervention_blocks_only_its_own_type(
        self, db_session: AsyncSession, couple: Couple
    ):
        engine = InterventionRuleEngine(db_session)
        hotline_only = Signals(red_zone_days=2, high_risk_messages=15)

        await engine.evaluate(await record(db_session, couple, hotline_only), hotline_only)
        fired = await engine.evaluate(await record(db_session, couple, SCENARIO_CRITICAL), SCENARIO_CRITICAL)

        assert [i.intervention_type for i in fired] == [InterventionType.COOLING_OFF]

    async def test_evaluate_rebuilds_signals_from_score(self, db_session: AsyncSession, couple: Couple):
        score = await record(db_session, couple, SCENARIO_CRITICAL)

        fired = await InterventionRuleEngine(db_session).evaluate(score)

        assert len(fired) == 2

    async def test_disengagement_opens_one_safety_check(self, db_session: AsyncSession, couple: Couple):
        signals = Signals(disengagement_hours=72, disengaged_user_id=couple.partner_2_id)
        engine = InterventionRuleEngine(db_session)

        fired = await engine.evaluate(await record(db_session, couple, signals), signals)
        await engine.evaluate(await record(db_session, couple, signals), signals)
        await db_session.commit()

        assert [i.intervention_type for i in fired] == [InterventionType.SAFETY_CHECK]
        checks = (await db_session.execute(select(SafetyCheck))).scalars().all()
        assert len(checks) == 1
        assert checks[0].target_user_id == couple.partner_2_id
        assert checks[0].check_type == SafetyCheckType.DISENGAGEMENT
        assert checks[0].couple_id == couple.id

    async def test_failed_insert_does_not_block_others(
        self, db_session: AsyncSession, couple: Couple, monkeypatch
    ):
        original = InterventionStore.create_if_absent

        async def flaky(self, couple_id, spec, **kwargs):
            if spec.intervention_type == InterventionType.CRISIS_HOTLINE:
                from sqlalchemy.exc import OperationalError
                raise OperationalError("INSERT", {}, Exception("disk I/O error"))
            return await original(self, couple_id, spec, **kwargs)

        monkeypatch.setattr(InterventionStore, "create_if_absent", flaky)
        score = await record(db_session, couple, SCENARIO_CRITICAL)

        fired = await InterventionRuleEngine(db_session).evaluate(score, SCENARIO_CRITICAL)

        assert [i.intervention_type for i in fired] == [InterventionType.COOLING_OFF]


# ==========================================================================
# Store
# ==========================================================================

class TestInterventionStore:
    """Tests for insert guard and acknowledgment."""

    def _spec(self, severity=Severity.CRITICAL):
        return decide(severity, Signals(red_zone_days=3))[0]

    async def test_lost_race_is_a_no_op(self, db_session: AsyncSession, couple: Couple, monkeypatch):
        """Two writers both pass the existence check; the unique index settles it."""
        store = InterventionStore(db_session)

        async def nothing_open(self, couple_id, intervention_type):
            return None

        monkeypatch.setattr(InterventionStore, "open_of_type", nothing_open)

        winner = await store.create_if_absent(couple.id, self._spec())
        loser = await store.create_if_absent(couple.id, self._spec())
        await db_session.commit()

        assert winner is not None
        assert loser is None
        assert await count_interventions(db_session, couple) == 1

    async def test_session_usable_after_lost_race(
        self, db_session: AsyncSession, couple: Couple, monkeypatch
    ):
        store = InterventionStore(db_session)

        async def nothing_open(self, couple_id, intervention_type):
            return None

        monkeypatch.setattr(InterventionStore, "open_of_type", nothing_open)

        first = await store.create_if_absent(couple.id, self._spec())
        await store.create_if_absent(couple.id, self._spec())
        cooling = decide(Severity.CRITICAL, Signals(red_zone_days=3))[1]
        other = await store.create_if_absent(couple.id, cooling)
        await db_session.commit()

        assert first.title  # not expired by the savepoint rollback
        assert other.intervention_type == InterventionType.COOLING_OFF

    async def test_open_for_and_list_for(self, db_session: AsyncSession, couple: Couple):
        store = InterventionStore(db_session)
        hotline, cooling = decide(Severity.CRITICAL, Signals(red_zone_days=3))

        first = await store.create_if_absent(couple.id, hotline)
        await store.create_if_absent(couple.id, cooling)
        await store.acknowledge(first.id, InterventionAction.ACKNOWLEDGED)
        await db_session.commit()

        open_ones = await store.open_for(couple.id)
        assert [i.intervention_type for i in open_ones] == [InterventionType.COOLING_OFF]
        assert len(await store.list_for(couple.id)) == 2

    async def test_acknowledge_once(self, db_session: AsyncSession, couple: Couple):
        store = InterventionStore(db_session)
        intervention = await store.create_if_absent(couple.id, self._spec())

        resolved = await store.acknowledge(intervention.id, InterventionAction.ACCEPTED)
        assert resolved.action_taken == InterventionAction.ACCEPTED
        assert resolved.acknowledged_at is not None

        with pytest.raises(AlreadyResolvedError):
            await store.acknowledge(intervention.id, InterventionAction.DECLINED)
        assert resolved.action_taken == InterventionAction.ACCEPTED

    async def test_acknowledge_unknown(self, db_session: AsyncSession):
        with pytest.raises(RecordNotFoundError):
            await InterventionStore(db_session).acknowledge(uuid4(), InterventionAction.ACKNOWLEDGED)


class TestResolveIntervention:
    """Acknowledging on behalf of a partner."""

    async def test_accepting_cooling_off_starts_period(self, db_session: AsyncSession, couple: Couple):
        cooling = decide(Severity.CRITICAL, Signals(red_zone_days=3))[1]
        intervention = await InterventionStore(db_session).create_if_absent(couple.id, cooling)

        resolved, period = await resolve_intervention(
            db_session, intervention.id, InterventionAction.ACCEPTED, couple.partner_1_id
        )
        await db_session.commit()

        assert resolved.action_taken == InterventionAction.ACCEPTED
        assert period is not None
        assert period.initiated_by == couple.partner_1_id
        assert period.duration_hours == 24

    async def test_declining_cooling_off_starts_nothing(self, db_session: AsyncSession, couple: Couple):
        cooling = decide(Severity.CRITICAL, Signals(red_zone_days=3))[1]
        intervention = await InterventionStore(db_session).create_if_absent(couple.id, cooling)

        _, period = await resolve_intervention(
            db_session, intervention.id, InterventionAction.DECLINED, couple.partner_1_id
        )

        assert period is None
        assert await db_session.scalar(select(func.count(CoolingOffPeriod.id))) == 0
