"""
Haven - Database Models
=======================

SQLAlchemy models for the crisis engine and the upstream activity records
it reads. Upstream tables (couples, check-ins, messages, conflicts) are owned
by other platform services; this service never writes to them outside tests.
"""

import enum
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from haven.core.database import Base
from haven.core.timeutils import utcnow


# ==========================================================================
# Enums
# ==========================================================================

class CoupleStatus(str, enum.Enum):
    """Lifecycle of a couple link."""
    PENDING = "pending"    # Invitation not yet accepted
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"


class NervousSystemZone(str, enum.Enum):
    """Self-reported nervous system state on a check-in."""
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class Severity(str, enum.Enum):
    """Crisis severity tiers, ordered from least to most severe."""
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MODERATE: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class InterventionType(str, enum.Enum):
    """Kinds of intervention the rule engine can fire."""
    COOLING_OFF = "cooling_off"
    EMERGENCY_THERAPY = "emergency_therapy"
    CRISIS_HOTLINE = "crisis_hotline"
    AI_SESSION = "ai_session"
    SAFETY_CHECK = "safety_check"


class InterventionAction(str, enum.Enum):
    """How a partner resolved an intervention."""
    ACKNOWLEDGED = "acknowledged"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    IGNORED = "ignored"


class CoolingOffStatus(str, enum.Enum):
    """Cooling-off period lifecycle."""
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SafetyCheckType(str, enum.Enum):
    """Why a safety check was sent."""
    DISENGAGEMENT = "disengagement"
    SUSTAINED_RED_ZONE = "sustained_red_zone"
    HIGH_RISK_PATTERN = "high_risk_pattern"


def _enum(enum_cls: type[enum.Enum]) -> Enum:
    """Enum column storing member values, matching the platform schema."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
    )


# ==========================================================================
# Mixins
# ==========================================================================

class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# ==========================================================================
# Upstream Records (read-only here)
# ==========================================================================

class Couple(Base, TimestampMixin):
    """
    Two linked partners.

    partner_2_id stays null until the invited partner joins.
    """

    __tablename__ = "couples"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    partner_1_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    partner_2_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, index=True)
    status: Mapped[CoupleStatus] = mapped_column(
        _enum(CoupleStatus),
        default=CoupleStatus.ACTIVE,
        nullable=False,
        index=True,
    )

    @property
    def partner_ids(self) -> list[UUID]:
        return [p for p in (self.partner_1_id, self.partner_2_id) if p is not None]

    def has_partner(self, user_id: UUID) -> bool:
        return user_id in self.partner_ids

    def __repr__(self) -> str:
        return f"<Couple {self.id} [{self.status.value}]>"


class CheckIn(Base):
    """Per-user wellness check-in."""

    __tablename__ = "check_ins"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    nervous_system_zone: Mapped[NervousSystemZone] = mapped_column(
        _enum(NervousSystemZone),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_check_ins_user_created", "user_id", "created_at"),
    )


class CoupleMessage(Base):
    """
    Message between partners.

    tone_analysis is written by the tone-analysis service:
    {"riskLevel": "low"|"medium"|"high", "gottmanWarnings": [...]}.
    """

    __tablename__ = "couple_messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    couple_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("couples.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    tone_analysis: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_couple_messages_couple_created", "couple_id", "created_at"),
    )


class Conflict(Base):
    """A logged conflict episode."""

    __tablename__ = "conflicts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    couple_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("couples.id", ondelete="CASCADE"),
        nullable=False,
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_conflicts_couple_started", "couple_id", "started_at"),
    )


# ==========================================================================
# Crisis Engine
# ==========================================================================

class CrisisScore(Base):
    """
    One risk calculation for a couple.

    Append-only: rows are never updated or deleted by the engine.
    """

    __tablename__ = "crisis_scores"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    couple_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("couples.id", ondelete="CASCADE"),
        nullable=False,
    )
    score: Mapped[int] = mapped_column(Integer, nullable=False)  # 0-100
    severity: Mapped[Severity] = mapped_column(_enum(Severity), nullable=False)

    # Signal breakdown
    red_zone_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    high_risk_messages: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    gottman_violations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    disengagement_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    conflict_frequency: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    factors: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_crisis_scores_couple_calculated", "couple_id", "calculated_at"),
        CheckConstraint("score >= 0 AND score <= 100", name="ck_crisis_scores_score_range"),
    )

    def __repr__(self) -> str:
        return f"<CrisisScore {self.couple_id} {self.score} [{self.severity.value}]>"


class CrisisIntervention(Base):
    """
    A triggered, user-facing intervention.

    At most one unacknowledged row per (couple_id, intervention_type); the
    partial unique index below is what guarantees it under concurrency.
    """

    __tablename__ = "crisis_interventions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    couple_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("couples.id", ondelete="CASCADE"),
        nullable=False,
    )
    crisis_score_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("crisis_scores.id", ondelete="SET NULL"),
        nullable=True,
    )
    intervention_type: Mapped[InterventionType] = mapped_column(
        _enum(InterventionType),
        nullable=False,
    )
    severity: Mapped[Severity] = mapped_column(_enum(Severity), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    action_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    triggered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    # Resolution (written once)
    action_taken: Mapped[Optional[InterventionAction]] = mapped_column(
        _enum(InterventionAction),
        nullable=True,
    )
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_crisis_interventions_couple_triggered", "couple_id", "triggered_at"),
        Index(
            "uq_crisis_interventions_open_type",
            "couple_id",
            "intervention_type",
            unique=True,
            sqlite_where=text("acknowledged_at IS NULL"),
            postgresql_where=text("acknowledged_at IS NULL"),
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.acknowledged_at is None

    def __repr__(self) -> str:
        state = "open" if self.is_open else self.action_taken.value
        return f"<CrisisIntervention {self.intervention_type.value} [{state}]>"


class CoolingOffPeriod(Base):
    """
    Enforced communication pause.

    active -> completed | cancelled; terminal states are final.
    """

    __tablename__ = "cooling_off_periods"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    couple_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("couples.id", ondelete="CASCADE"),
        nullable=False,
    )
    initiated_by: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    reason: Mapped[str] = mapped_column(Text, default="", nullable=False)
    duration_hours: Mapped[int] = mapped_column(Integer, default=24, nullable=False)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[CoolingOffStatus] = mapped_column(
        _enum(CoolingOffStatus),
        default=CoolingOffStatus.ACTIVE,
        nullable=False,
    )
    early_ended_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    early_end_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_cooling_off_couple_status_ends", "couple_id", "status", "ends_at"),
        Index(
            "uq_cooling_off_one_active",
            "couple_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<CoolingOffPeriod {self.couple_id} [{self.status.value}]>"


class SafetyCheck(Base):
    """Targeted wellbeing prompt to one partner. Closed once responded."""

    __tablename__ = "safety_checks"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    couple_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("couples.id", ondelete="CASCADE"),
        nullable=False,
    )
    target_user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    check_type: Mapped[SafetyCheckType] = mapped_column(
        _enum(SafetyCheckType),
        nullable=False,
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    responded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    requires_escalation: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_safety_checks_target_created", "target_user_id", "created_at"),
    )

    @property
    def is_open(self) -> bool:
        return self.responded_at is None

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<SafetyCheck {self.check_type.value} -> {self.target_user_id} [{state}]>"
