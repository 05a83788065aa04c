"""
Haven - Crisis API
==================

Crisis scores, interventions, hotlines and the manual sweep trigger.
"""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from haven.api.deps import CurrentUserId, DbSession, ServiceKey, SessionFactory, get_couple_for_member
from haven.core.config import settings
from haven.core.crisis import (
    CrisisStorageError,
    InterventionStore,
    ScoreStore,
    list_hotlines,
    recompute_couple,
    resolve_intervention,
    run_sweep,
)
from haven.core.schemas import (
    CoolingOffResponse,
    CrisisHistoryResponse,
    CrisisScoreResponse,
    ErrorResponse,
    HotlineResponse,
    InterventionAcknowledge,
    InterventionResolution,
    InterventionResponse,
    RecomputeResponse,
    SweepResponse,
)
from haven.core.timeutils import end_of_day

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Crisis"])


# ==========================================================================
# Scores
# ==========================================================================

@router.get(
    "/couples/{couple_id}/crisis/score",
    response_model=CrisisScoreResponse,
    summary="Latest crisis score",
    responses={404: {"description": "Couple not found or never scored"}},
)
async def get_latest_score(
    couple_id: UUID,
    user_id: CurrentUserId,
    db: DbSession,
) -> CrisisScoreResponse:
    await get_couple_for_member(couple_id, user_id, db)

    score = await ScoreStore(db).latest(couple_id)
    if score is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No crisis score recorded yet",
        )
    return CrisisScoreResponse.model_validate(score)


@router.get(
    "/couples/{couple_id}/crisis/history",
    response_model=CrisisHistoryResponse,
    summary="Crisis score history",
)
async def get_score_history(
    couple_id: UUID,
    user_id: CurrentUserId,
    db: DbSession,
    limit: int = Query(settings.CRISIS_HISTORY_LIMIT, ge=1, le=365),
) -> CrisisHistoryResponse:
    """Scores for the couple, newest first."""
    await get_couple_for_member(couple_id, user_id, db)

    scores = await ScoreStore(db).history(couple_id, limit=limit)
    return CrisisHistoryResponse(
        couple_id=couple_id,
        scores=[CrisisScoreResponse.model_validate(s) for s in scores],
    )


@router.post(
    "/couples/{couple_id}/crisis/recompute",
    response_model=RecomputeResponse,
    summary="Recompute crisis score now",
    responses={
        503: {
            "model": ErrorResponse,
            "description": "Store unavailable; previous score included, safe to retry",
        },
    },
)
async def recompute_score(
    couple_id: UUID,
    user_id: CurrentUserId,
    session_factory: SessionFactory,
) -> RecomputeResponse | JSONResponse:
    """
    Run the crisis pipeline for one couple immediately.

    Uses its own short-lived sessions so the membership read does not hold
    a transaction open while the pipeline writes.
    """
    async with session_factory() as db:
        await get_couple_for_member(couple_id, user_id, db)

    try:
        outcome = await recompute_couple(session_factory, couple_id)
    except CrisisStorageError as e:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=ErrorResponse(
                error="Crisis score unavailable",
                detail=str(e),
                code="CRISIS_STORAGE_ERROR",
                retryable=True,
                latest_score=await _latest_or_none(session_factory, couple_id),
            ).model_dump(mode="json"),
        )

    return RecomputeResponse(
        couple_id=outcome.couple_id,
        score=outcome.score,
        severity=outcome.severity,
        score_id=outcome.score_id,
        interventions=outcome.interventions,
    )


async def _latest_or_none(session_factory, couple_id: UUID) -> Optional[CrisisScoreResponse]:
    try:
        async with session_factory() as db:
            score = await ScoreStore(db).latest(couple_id)
    except SQLAlchemyError as e:
        logger.warning("latest_score_unavailable", couple_id=str(couple_id), error=str(e))
        return None
    return CrisisScoreResponse.model_validate(score) if score is not None else None


# ==========================================================================
# Interventions
# ==========================================================================

@router.get(
    "/couples/{couple_id}/crisis/interventions",
    response_model=list[InterventionResponse],
    summary="List interventions",
)
async def list_interventions(
    couple_id: UUID,
    user_id: CurrentUserId,
    db: DbSession,
    include_resolved: bool = False,
    limit: int = Query(50, ge=1, le=200),
) -> list[InterventionResponse]:
    """Open interventions by default; pass include_resolved for the full log."""
    await get_couple_for_member(couple_id, user_id, db)

    store = InterventionStore(db)
    if include_resolved:
        interventions = await store.list_for(couple_id, limit=limit)
    else:
        interventions = await store.open_for(couple_id)
    return [InterventionResponse.model_validate(i) for i in interventions]


@router.post(
    "/crisis/interventions/{intervention_id}/acknowledge",
    response_model=InterventionResolution,
    summary="Acknowledge an intervention",
    responses={
        404: {"description": "Intervention not found"},
        409: {"description": "Intervention already acknowledged"},
    },
)
async def acknowledge_intervention(
    intervention_id: UUID,
    data: InterventionAcknowledge,
    user_id: CurrentUserId,
    db: DbSession,
) -> InterventionResolution:
    """
    Resolve an intervention.

    Accepting a cooling_off intervention starts a cooling-off period
    initiated by the caller.
    """
    intervention = await InterventionStore(db).get(intervention_id)
    await get_couple_for_member(intervention.couple_id, user_id, db)

    intervention, period = await resolve_intervention(db, intervention_id, data.action, user_id)
    return InterventionResolution(
        intervention=InterventionResponse.model_validate(intervention),
        cooling_off=CoolingOffResponse.model_validate(period) if period else None,
    )


# ==========================================================================
# Hotlines
# ==========================================================================

@router.get(
    "/crisis/hotlines",
    response_model=list[HotlineResponse],
    summary="Crisis hotline directory",
)
async def get_hotlines(
    country: str = Query("US", min_length=2, max_length=2),
) -> list[HotlineResponse]:
    """Public directory; no authentication required."""
    return [HotlineResponse.model_validate(h.to_dict()) for h in list_hotlines(country)]


# ==========================================================================
# Sweep
# ==========================================================================

@router.post(
    "/crisis/sweep",
    response_model=SweepResponse,
    summary="Run the crisis sweep now",
    dependencies=[ServiceKey],
)
async def trigger_sweep(
    session_factory: SessionFactory,
    as_of: Optional[date] = None,
) -> SweepResponse:
    """
    Score every active couple. Requires the X-Service-Key header.

    as_of scores the window ending at the end of that day (UTC).
    """
    as_of_dt: Optional[datetime] = end_of_day(as_of) if as_of is not None else None

    summary = await run_sweep(session_factory, as_of=as_of_dt)
    return SweepResponse.model_validate(summary.to_dict())
