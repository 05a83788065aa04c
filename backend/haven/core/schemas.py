"""
Haven - Pydantic Schemas
========================

Request and response schemas for the crisis API.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field

from haven.core.models import (
    CoolingOffStatus,
    InterventionAction,
    InterventionType,
    SafetyCheckType,
    Severity,
)
from haven.core.timeutils import ensure_utc, utcnow


# ==========================================================================
# Base Schemas
# ==========================================================================

class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# ==========================================================================
# Crisis Scores
# ==========================================================================

class CrisisScoreResponse(BaseSchema):
    """A recorded crisis score with its signal breakdown."""

    id: UUID
    couple_id: UUID
    score: int = Field(ge=0, le=100)
    severity: Severity
    red_zone_days: int
    high_risk_messages: int
    gottman_violations: int
    disengagement_hours: float
    conflict_frequency: int
    factors: Optional[dict[str, Any]] = None
    calculated_at: datetime


class CrisisHistoryResponse(BaseSchema):
    couple_id: UUID
    scores: list[CrisisScoreResponse]


# ==========================================================================
# Interventions
# ==========================================================================

class InterventionResponse(BaseSchema):
    """A crisis intervention as shown to the couple."""

    id: UUID
    couple_id: UUID
    crisis_score_id: Optional[UUID] = None
    intervention_type: InterventionType
    severity: Severity
    title: str
    message: str
    action_required: bool
    expires_at: Optional[datetime] = None
    triggered_at: datetime
    action_taken: Optional[InterventionAction] = None
    acknowledged_at: Optional[datetime] = None


class InterventionAcknowledge(BaseSchema):
    """Resolution chosen by a partner."""

    action: InterventionAction = InterventionAction.ACKNOWLEDGED


class RecomputeResponse(BaseSchema):
    """Result of an on-demand recompute."""

    couple_id: UUID
    score: int
    severity: Severity
    score_id: UUID
    interventions: list[InterventionType]


# ==========================================================================
# Cooling-Off
# ==========================================================================

class CoolingOffStart(BaseSchema):
    reason: str = Field(default="", max_length=2000)
    duration_hours: Optional[int] = Field(default=None, ge=1, le=168)


class CoolingOffEnd(BaseSchema):
    reason: Optional[str] = Field(default=None, max_length=2000)


class CoolingOffResponse(BaseSchema):
    """A cooling-off period; is_active applies lazy expiry."""

    id: UUID
    couple_id: UUID
    initiated_by: UUID
    reason: str
    duration_hours: int
    started_at: datetime
    ends_at: datetime
    status: CoolingOffStatus
    early_ended_at: Optional[datetime] = None
    early_end_reason: Optional[str] = None

    @computed_field  # type: ignore[misc]
    @property
    def is_active(self) -> bool:
        return self.status == CoolingOffStatus.ACTIVE and ensure_utc(self.ends_at) > utcnow()


class CoolingOffStatusResponse(BaseSchema):
    couple_id: UUID
    in_cooling_off: bool
    period: Optional[CoolingOffResponse] = None


class InterventionResolution(BaseSchema):
    """Acknowledged intervention plus any cooling-off period it started."""

    intervention: InterventionResponse
    cooling_off: Optional[CoolingOffResponse] = None


# ==========================================================================
# Safety Checks
# ==========================================================================

class SafetyCheckResponse(BaseSchema):
    id: UUID
    couple_id: UUID
    target_user_id: UUID
    check_type: SafetyCheckType
    message: str
    response: Optional[str] = None
    responded_at: Optional[datetime] = None
    requires_escalation: bool
    created_at: datetime


class SafetyCheckRespond(BaseSchema):
    response: str = Field(min_length=1, max_length=5000)
    requires_escalation: bool = False


# ==========================================================================
# Hotlines
# ==========================================================================

class HotlineResponse(BaseSchema):
    country: str
    name: str
    phone: str
    type: str
    description: str
    available_24_7: bool
    website: Optional[str] = None


# ==========================================================================
# Sweep
# ==========================================================================

class SweepCoupleResult(BaseSchema):
    couple_id: UUID
    score: int
    severity: Severity
    interventions: list[InterventionType]


class SweepFailureResponse(BaseSchema):
    couple_id: UUID
    error: str


class SweepResponse(BaseSchema):
    """Summary of one batch sweep."""

    date: str
    processed_count: int
    failed_count: int
    per_couple: list[SweepCoupleResult]
    failures: list[SweepFailureResponse]


# ==========================================================================
# Common
# ==========================================================================

class ErrorResponse(BaseSchema):
    """Error response schema."""

    error: str
    detail: Optional[str] = None
    code: Optional[str] = None
    retryable: bool = False
    latest_score: Optional[CrisisScoreResponse] = None


class HealthResponse(BaseSchema):
    """Health check response."""

    status: str
    version: str
    environment: str
    database: str
