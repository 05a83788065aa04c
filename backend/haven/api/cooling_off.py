"""
Haven - Cooling-Off API
=======================

Start, end and inspect enforced communication pauses.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, status

from haven.api.deps import CurrentUserId, DbSession, get_couple_for_member
from haven.core.crisis import CoolingOffManager
from haven.core.schemas import (
    CoolingOffEnd,
    CoolingOffResponse,
    CoolingOffStart,
    CoolingOffStatusResponse,
)

router = APIRouter(tags=["Cooling-Off"])


@router.get(
    "/couples/{couple_id}/cooling-off",
    response_model=CoolingOffStatusResponse,
    summary="Current cooling-off status",
)
async def get_cooling_off(
    couple_id: UUID,
    user_id: CurrentUserId,
    db: DbSession,
) -> CoolingOffStatusResponse:
    await get_couple_for_member(couple_id, user_id, db)

    period = await CoolingOffManager(db).active_for(couple_id)
    return CoolingOffStatusResponse(
        couple_id=couple_id,
        in_cooling_off=period is not None,
        period=CoolingOffResponse.model_validate(period) if period else None,
    )


@router.post(
    "/couples/{couple_id}/cooling-off",
    response_model=CoolingOffResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a cooling-off period",
    responses={409: {"description": "A cooling-off period is already active"}},
)
async def start_cooling_off(
    couple_id: UUID,
    data: CoolingOffStart,
    user_id: CurrentUserId,
    db: DbSession,
) -> CoolingOffResponse:
    await get_couple_for_member(couple_id, user_id, db)

    period = await CoolingOffManager(db).start(
        couple_id,
        initiated_by=user_id,
        reason=data.reason,
        duration_hours=data.duration_hours,
    )
    return CoolingOffResponse.model_validate(period)


@router.post(
    "/cooling-off/{period_id}/end",
    response_model=CoolingOffResponse,
    summary="End a cooling-off period early",
    responses={409: {"description": "Period already over"}},
)
async def end_cooling_off(
    period_id: UUID,
    user_id: CurrentUserId,
    db: DbSession,
    data: Optional[CoolingOffEnd] = None,
) -> CoolingOffResponse:
    manager = CoolingOffManager(db)
    period = await manager.get(period_id)
    await get_couple_for_member(period.couple_id, user_id, db)

    period = await manager.end_early(period_id, reason=data.reason if data else None)
    return CoolingOffResponse.model_validate(period)


@router.post(
    "/cooling-off/{period_id}/cancel",
    response_model=CoolingOffResponse,
    summary="Cancel a cooling-off period",
    responses={409: {"description": "Period already over"}},
)
async def cancel_cooling_off(
    period_id: UUID,
    user_id: CurrentUserId,
    db: DbSession,
    data: Optional[CoolingOffEnd] = None,
) -> CoolingOffResponse:
    manager = CoolingOffManager(db)
    period = await manager.get(period_id)
    await get_couple_for_member(period.couple_id, user_id, db)

    period = await manager.cancel(period_id, reason=data.reason if data else None)
    return CoolingOffResponse.model_validate(period)
