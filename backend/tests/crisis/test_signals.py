"""
Signal Aggregator tests.
"""

from datetime import timedelta
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from haven.core.crisis.signals import SignalAggregator, Signals
from haven.core.models import Conflict, Couple, CrisisScore, NervousSystemZone, Severity
from tests.conftest import AS_OF, check_in, make_couple, message, seed_signals


class TestSignalAggregator:
    """Trailing-window signal computation."""

    async def test_no_data_yields_zero_signals(self, db_session: AsyncSession, couple: Couple):
        signals = await SignalAggregator(db_session).collect(couple, as_of=AS_OF)

        assert signals == Signals()

    async def test_couple_without_partners_data(self, session_factory, db_session: AsyncSession):
        solo = await make_couple(session_factory, with_partner=False)

        signals = await SignalAggregator(db_session).collect(solo, as_of=AS_OF)

        assert signals.red_zone_days == 0
        assert signals.mutual_red_zone is False

    async def test_red_zone_days_are_distinct_calendar_days(
        self, session_factory, db_session: AsyncSession, couple: Couple
    ):
        day = AS_OF - timedelta(days=1)
        async with session_factory() as session:
            session.add_all([
                # Both partners red on the same day counts once
                check_in(couple.partner_1_id, NervousSystemZone.RED, day),
                check_in(couple.partner_2_id, NervousSystemZone.RED, day + timedelta(hours=1)),
                check_in(couple.partner_1_id, NervousSystemZone.RED, AS_OF - timedelta(days=3)),
                check_in(couple.partner_1_id, NervousSystemZone.YELLOW, AS_OF - timedelta(days=2)),
                # Outside the window
                check_in(couple.partner_2_id, NervousSystemZone.RED, AS_OF - timedelta(days=8)),
            ])
            await session.commit()

        signals = await SignalAggregator(db_session).collect(couple, as_of=AS_OF)

        assert signals.red_zone_days == 2
        assert signals.mutual_red_zone is True

    async def test_one_partner_red_is_not_mutual(
        self, session_factory, db_session: AsyncSession, couple: Couple
    ):
        await seed_signals(session_factory, couple, red_zone_days=3)

        signals = await SignalAggregator(db_session).collect(couple, as_of=AS_OF)

        assert signals.red_zone_days == 3
        assert signals.mutual_red_zone is False

    async def test_other_couples_records_are_ignored(
        self, session_factory, db_session: AsyncSession, couple: Couple
    ):
        other = await make_couple(session_factory)
        await seed_signals(session_factory, other, red_zone_days=3, high_risk_messages=5, conflicts=5)

        signals = await SignalAggregator(db_session).collect(couple, as_of=AS_OF)

        assert signals == Signals()

    async def test_message_risk_and_gottman_warnings(
        self, session_factory, db_session: AsyncSession, couple: Couple
    ):
        sender = couple.partner_1_id
        async with session_factory() as session:
            session.add_all([
                message(couple, sender, AS_OF - timedelta(hours=1), risk="high"),
                message(couple, sender, AS_OF - timedelta(hours=2), risk="Medium"),
                message(couple, sender, AS_OF - timedelta(hours=3), risk="low", warnings=["contempt", "stonewalling"]),
                message(couple, sender, AS_OF - timedelta(days=1), risk="high", warnings=["criticism"]),
                message(couple, sender, AS_OF - timedelta(days=9), risk="high", warnings=["criticism"]),
            ])
            await session.commit()

        signals = await SignalAggregator(db_session).collect(couple, as_of=AS_OF)

        assert signals.high_risk_messages == 3
        assert signals.gottman_violations == 3

    async def test_messages_without_tone_analysis_are_skipped(
        self, session_factory, db_session: AsyncSession, couple: Couple
    ):
        msg = message(couple, couple.partner_1_id, AS_OF - timedelta(hours=1))
        msg.tone_analysis = None
        async with session_factory() as session:
            session.add(msg)
            await session.commit()

        signals = await SignalAggregator(db_session).collect(couple, as_of=AS_OF)

        assert signals.high_risk_messages == 0
        assert signals.gottman_violations == 0

    async def test_conflicts_in_window(self, session_factory, db_session: AsyncSession, couple: Couple):
        async with session_factory() as session:
            session.add_all([
                Conflict(id=uuid4(), couple_id=couple.id, started_at=AS_OF - timedelta(days=1)),
                Conflict(id=uuid4(), couple_id=couple.id, started_at=AS_OF - timedelta(days=6)),
                Conflict(id=uuid4(), couple_id=couple.id, started_at=AS_OF - timedelta(days=8)),
            ])
            await session.commit()

        signals = await SignalAggregator(db_session).collect(couple, as_of=AS_OF)

        assert signals.conflict_frequency == 2

    async def test_disengagement_tracks_quietest_partner(
        self, session_factory, db_session: AsyncSession, couple: Couple
    ):
        async with session_factory() as session:
            session.add_all([
                check_in(couple.partner_1_id, NervousSystemZone.GREEN, AS_OF - timedelta(hours=2)),
                check_in(couple.partner_2_id, NervousSystemZone.GREEN, AS_OF - timedelta(hours=80)),
                check_in(couple.partner_2_id, NervousSystemZone.GREEN, AS_OF - timedelta(hours=60)),
            ])
            await session.commit()

        signals = await SignalAggregator(db_session).collect(couple, as_of=AS_OF)

        assert signals.disengagement_hours == 60
        assert signals.disengaged_user_id == couple.partner_2_id

    async def test_disengagement_zero_within_grace(
        self, session_factory, db_session: AsyncSession, couple: Couple
    ):
        await seed_signals(session_factory, couple, silent_hours=20)

        signals = await SignalAggregator(db_session).collect(couple, as_of=AS_OF)

        assert signals.disengagement_hours == 0
        assert signals.disengaged_user_id is None

    async def test_partner_without_history_is_not_disengaged(
        self, session_factory, db_session: AsyncSession, couple: Couple
    ):
        async with session_factory() as session:
            session.add(check_in(couple.partner_1_id, NervousSystemZone.GREEN, AS_OF - timedelta(hours=1)))
            await session.commit()

        signals = await SignalAggregator(db_session).collect(couple, as_of=AS_OF)

        assert signals.disengagement_hours == 0

    async def test_records_after_as_of_are_ignored(
        self, session_factory, db_session: AsyncSession, couple: Couple
    ):
        await seed_signals(session_factory, couple, as_of=AS_OF + timedelta(days=2), red_zone_days=1)

        signals = await SignalAggregator(db_session).collect(couple, as_of=AS_OF)

        assert signals.red_zone_days == 0

    async def test_custom_window(self, session_factory, db_session: AsyncSession, couple: Couple):
        await seed_signals(session_factory, couple, red_zone_days=5)

        signals = await SignalAggregator(db_session, window_days=2).collect(couple, as_of=AS_OF)

        assert signals.red_zone_days == 2


class TestSignalsFromScore:
    def test_round_trips_stored_breakdown(self):
        target = uuid4()
        signals = Signals(
            red_zone_days=3,
            high_risk_messages=1,
            disengagement_hours=50.5,
            mutual_red_zone=True,
            disengaged_user_id=target,
        )
        score = CrisisScore(
            couple_id=uuid4(),
            score=60,
            severity=Severity.CRITICAL,
            red_zone_days=3,
            high_risk_messages=1,
            gottman_violations=0,
            disengagement_hours=50.5,
            conflict_frequency=0,
            factors=signals.to_factors(),
        )

        assert Signals.from_score(score) == signals
