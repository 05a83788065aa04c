"""
Intervention Rule Engine - severity and signals to graduated interventions.

Two halves:
- decide(): pure rule table, (severity, signals) -> intervention specs
- InterventionRuleEngine: persists specs idempotently

Idempotency: at most one unacknowledged intervention per
(couple_id, intervention_type). The partial unique index on
crisis_interventions is authoritative; the existence check before insert
only saves a round-trip. Each insert runs in its own SAVEPOINT so a
duplicate (or any other failed insert) is skipped without touching the rest
of the evaluation.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from haven.core.crisis.cooling_off import CoolingOffManager
from haven.core.crisis.errors import (
    AlreadyResolvedError,
    CoolingOffActiveError,
    RecordNotFoundError,
)
from haven.core.crisis.safety_checks import SafetyCheckService
from haven.core.crisis.scoring import (
    CONFLICT_FREQUENCY_THRESHOLD,
    DISENGAGEMENT_HOURS_THRESHOLD,
    GOTTMAN_VIOLATION_THRESHOLD,
    HIGH_RISK_MESSAGE_THRESHOLD,
    SUSTAINED_RED_ZONE_DAYS,
)
from haven.core.crisis.signals import Signals
from haven.core.models import (
    CoolingOffPeriod,
    CrisisIntervention,
    CrisisScore,
    InterventionAction,
    InterventionType,
    SafetyCheckType,
    Severity,
)
from haven.core.timeutils import utcnow

logger = structlog.get_logger(__name__)


# ==========================================================================
# Catalog
# ==========================================================================

@dataclass(frozen=True)
class CatalogEntry:
    title: str
    message: str
    action_required: bool = False


CATALOG: dict[tuple[InterventionType, Severity], CatalogEntry] = {
    (InterventionType.CRISIS_HOTLINE, Severity.CRITICAL): CatalogEntry(
        title="Critical Alert: Immediate Support Needed",
        message=(
            "Your relationship health indicators suggest you may be in crisis. "
            "Please consider reaching out to a crisis hotline or emergency therapist "
            "immediately. Your safety and well-being are the top priority."
        ),
        action_required=True,
    ),
    (InterventionType.COOLING_OFF, Severity.CRITICAL): CatalogEntry(
        title="Mandatory 24-Hour Break",
        message=(
            "Both partners have been in the red zone for 3+ days. A 24-hour "
            "cooling-off period is strongly recommended to prevent further escalation."
        ),
        action_required=True,
    ),
    (InterventionType.AI_SESSION, Severity.HIGH): CatalogEntry(
        title="Communication Pattern Alert",
        message=(
            "We've detected 5+ high-risk messages in the past week. Consider taking "
            "a break from messaging and scheduling an AI coaching session to improve "
            "communication patterns."
        ),
    ),
    (InterventionType.EMERGENCY_THERAPY, Severity.HIGH): CatalogEntry(
        title="Four Horsemen Alert",
        message=(
            "Multiple instances of criticism, contempt, defensiveness, or stonewalling "
            "detected. These patterns can predict relationship distress. Consider "
            "booking an emergency therapy session."
        ),
    ),
    (InterventionType.SAFETY_CHECK, Severity.HIGH): CatalogEntry(
        title="Partner Disengagement Detected",
        message=(
            "Your partner hasn't checked in for over 48 hours. We're sending them a "
            "safety check to make sure they're okay."
        ),
    ),
    (InterventionType.AI_SESSION, Severity.MODERATE): CatalogEntry(
        title="Conflict Frequency Increasing",
        message=(
            "You've logged 5+ conflicts this week. Consider using repair tools or "
            "scheduling an AI coaching session to work through these patterns."
        ),
    ),
}


@dataclass(frozen=True)
class InterventionSpec:
    """One intervention the rules want to fire."""
    intervention_type: InterventionType
    severity: Severity
    title: str
    message: str
    action_required: bool = False
    safety_check_target: Optional[UUID] = None


def _spec(
    intervention_type: InterventionType,
    severity: Severity,
    safety_check_target: Optional[UUID] = None,
) -> InterventionSpec:
    entry = CATALOG[(intervention_type, severity)]
    return InterventionSpec(
        intervention_type=intervention_type,
        severity=severity,
        title=entry.title,
        message=entry.message,
        action_required=entry.action_required,
        safety_check_target=safety_check_target,
    )


def decide(severity: Severity, signals: Signals) -> list[InterventionSpec]:
    """
    Rule table. Rules within a tier are independent; any subset may fire.

    critical -> crisis_hotline, + cooling_off on sustained red zone
    high     -> ai_session / emergency_therapy / safety_check by signal
    moderate -> ai_session on frequent conflict
    low      -> nothing
    """
    specs: list[InterventionSpec] = []

    if severity == Severity.CRITICAL:
        specs.append(_spec(InterventionType.CRISIS_HOTLINE, severity))
        if signals.red_zone_days >= SUSTAINED_RED_ZONE_DAYS:
            specs.append(_spec(InterventionType.COOLING_OFF, severity))

    elif severity == Severity.HIGH:
        if signals.high_risk_messages >= HIGH_RISK_MESSAGE_THRESHOLD:
            specs.append(_spec(InterventionType.AI_SESSION, severity))
        if signals.gottman_violations >= GOTTMAN_VIOLATION_THRESHOLD:
            specs.append(_spec(InterventionType.EMERGENCY_THERAPY, severity))
        if signals.disengagement_hours >= DISENGAGEMENT_HOURS_THRESHOLD:
            specs.append(
                _spec(
                    InterventionType.SAFETY_CHECK,
                    severity,
                    safety_check_target=signals.disengaged_user_id,
                )
            )

    elif severity == Severity.MODERATE:
        if signals.conflict_frequency >= CONFLICT_FREQUENCY_THRESHOLD:
            specs.append(_spec(InterventionType.AI_SESSION, severity))

    return specs


# ==========================================================================
# Store
# ==========================================================================

class InterventionStore:
    """Persistence for crisis interventions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def open_of_type(
        self,
        couple_id: UUID,
        intervention_type: InterventionType,
    ) -> Optional[CrisisIntervention]:
        result = await self.db.execute(
            select(CrisisIntervention)
            .where(CrisisIntervention.couple_id == couple_id)
            .where(CrisisIntervention.intervention_type == intervention_type)
            .where(CrisisIntervention.acknowledged_at.is_(None))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_if_absent(
        self,
        couple_id: UUID,
        spec: InterventionSpec,
        crisis_score_id: Optional[UUID] = None,
        expires_at: Optional[datetime] = None,
    ) -> Optional[CrisisIntervention]:
        """
        Insert an intervention unless one of the same type is still open.

        Returns:
            The new intervention, or None when an open one already exists
            (including when a concurrent writer won the race)
        """
        if await self.open_of_type(couple_id, spec.intervention_type) is not None:
            return None

        intervention = CrisisIntervention(
            id=uuid4(),
            couple_id=couple_id,
            crisis_score_id=crisis_score_id,
            intervention_type=spec.intervention_type,
            severity=spec.severity,
            title=spec.title,
            message=spec.message,
            action_required=spec.action_required,
            expires_at=expires_at,
            triggered_at=utcnow(),
        )
        try:
            async with self.db.begin_nested():
                self.db.add(intervention)
                await self.db.flush()
        except IntegrityError:
            logger.info(
                "intervention_already_open",
                couple_id=str(couple_id),
                intervention_type=spec.intervention_type.value,
            )
            return None
        return intervention

    async def get(self, intervention_id: UUID) -> CrisisIntervention:
        result = await self.db.execute(
            select(CrisisIntervention).where(CrisisIntervention.id == intervention_id)
        )
        intervention = result.scalar_one_or_none()
        if intervention is None:
            raise RecordNotFoundError("CrisisIntervention", intervention_id)
        return intervention

    async def open_for(self, couple_id: UUID) -> list[CrisisIntervention]:
        """Unacknowledged interventions, newest first."""
        result = await self.db.execute(
            select(CrisisIntervention)
            .where(CrisisIntervention.couple_id == couple_id)
            .where(CrisisIntervention.acknowledged_at.is_(None))
            .order_by(CrisisIntervention.triggered_at.desc())
        )
        return list(result.scalars().all())

    async def list_for(self, couple_id: UUID, limit: int = 50) -> list[CrisisIntervention]:
        result = await self.db.execute(
            select(CrisisIntervention)
            .where(CrisisIntervention.couple_id == couple_id)
            .order_by(CrisisIntervention.triggered_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def acknowledge(
        self,
        intervention_id: UUID,
        action: InterventionAction,
    ) -> CrisisIntervention:
        """
        Record how the couple resolved an intervention. Allowed once.

        Raises:
            RecordNotFoundError: Unknown intervention
            AlreadyResolvedError: Already acknowledged
        """
        intervention = await self.get(intervention_id)
        if not intervention.is_open:
            raise AlreadyResolvedError("CrisisIntervention", intervention_id)

        intervention.action_taken = action
        intervention.acknowledged_at = utcnow()
        await self.db.flush()
        return intervention


# ==========================================================================
# Rule Engine
# ==========================================================================

class InterventionRuleEngine:
    """Evaluates a fresh score and fires the interventions it calls for."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = InterventionStore(db)
        self.safety_checks = SafetyCheckService(db)

    async def evaluate(
        self,
        score: CrisisScore,
        signals: Optional[Signals] = None,
    ) -> list[CrisisIntervention]:
        """
        Fire interventions for a score.

        Args:
            score: The freshly recorded score
            signals: Signals behind the score; rebuilt from the score when omitted

        Returns:
            Interventions inserted by this call (already-open ones are skipped)
        """
        signals = signals or Signals.from_score(score)
        log = logger.bind(couple_id=str(score.couple_id), severity=score.severity.value)

        fired: list[CrisisIntervention] = []
        for spec in decide(score.severity, signals):
            try:
                intervention = await self.store.create_if_absent(
                    score.couple_id,
                    spec,
                    crisis_score_id=score.id,
                )
                if intervention is None:
                    continue
                fired.append(intervention)

                if spec.intervention_type == InterventionType.SAFETY_CHECK:
                    await self._open_disengagement_check(score.couple_id, spec)
            except SQLAlchemyError as e:
                log.error(
                    "intervention_insert_failed",
                    intervention_type=spec.intervention_type.value,
                    error=str(e),
                )

        if fired:
            log.info(
                "interventions_fired",
                interventions=[i.intervention_type.value for i in fired],
            )
        return fired

    async def _open_disengagement_check(self, couple_id: UUID, spec: InterventionSpec) -> None:
        target = spec.safety_check_target
        if target is None:
            return
        if await self.safety_checks.has_pending(couple_id, target, SafetyCheckType.DISENGAGEMENT):
            return
        await self.safety_checks.create(couple_id, target, SafetyCheckType.DISENGAGEMENT)


async def resolve_intervention(
    db: AsyncSession,
    intervention_id: UUID,
    action: InterventionAction,
    user_id: UUID,
) -> tuple[CrisisIntervention, Optional[CoolingOffPeriod]]:
    """
    Acknowledge an intervention on behalf of a partner.

    Accepting a cooling_off intervention starts the recommended pause,
    initiated by the accepting partner. If a pause is already running the
    acknowledgment still succeeds.

    Returns:
        The resolved intervention and the cooling-off period it started, if any
    """
    store = InterventionStore(db)
    intervention = await store.acknowledge(intervention_id, action)

    period = None
    if (
        action == InterventionAction.ACCEPTED
        and intervention.intervention_type == InterventionType.COOLING_OFF
    ):
        try:
            period = await CoolingOffManager(db).start(
                intervention.couple_id,
                initiated_by=user_id,
                reason=intervention.title,
            )
        except CoolingOffActiveError:
            logger.info("cooling_off_already_active", couple_id=str(intervention.couple_id))

    return intervention, period
