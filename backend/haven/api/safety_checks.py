"""
Haven - Safety Checks API
=========================

Pending safety checks for the current user and their responses.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from haven.api.deps import CurrentUserId, DbSession
from haven.core.crisis import SafetyCheckService
from haven.core.schemas import SafetyCheckRespond, SafetyCheckResponse

router = APIRouter(prefix="/safety-checks", tags=["Safety Checks"])


@router.get(
    "/pending",
    response_model=list[SafetyCheckResponse],
    summary="Open safety checks for me",
)
async def list_pending(
    user_id: CurrentUserId,
    db: DbSession,
) -> list[SafetyCheckResponse]:
    checks = await SafetyCheckService(db).pending_for(user_id)
    return [SafetyCheckResponse.model_validate(c) for c in checks]


@router.post(
    "/{check_id}/respond",
    response_model=SafetyCheckResponse,
    summary="Respond to a safety check",
    responses={
        403: {"description": "Check is addressed to another user"},
        409: {"description": "Already responded"},
    },
)
async def respond(
    check_id: UUID,
    data: SafetyCheckRespond,
    user_id: CurrentUserId,
    db: DbSession,
) -> SafetyCheckResponse:
    """Only the partner the check targets may answer it."""
    service = SafetyCheckService(db)
    check = await service.get(check_id)
    if check.target_user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This safety check is addressed to another user",
        )

    check = await service.respond(
        check_id,
        data.response,
        requires_escalation=data.requires_escalation,
    )
    return SafetyCheckResponse.model_validate(check)
