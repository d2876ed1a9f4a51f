"""API endpoints for stamp awards, reward redemption and member summaries."""

from __future__ import annotations

from typing import Any, List

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard_api.api.dependencies.security import require_internal_api_key
from stampcard_api.api.dependencies.session import get_caller_context
from stampcard_api.db.session import SessionFactory, get_session, get_session_factory
from stampcard_api.observability.loyalty import get_loyalty_store
from stampcard_api.observability.scheduler import get_scheduler_store
from stampcard_api.schemas.loyalty import (
    AwardOutcomeResponse,
    CustomerSummaryResponse,
    QueueTicketChange,
    RedeemedReward,
    RewardApplicationRequest,
    RewardApplicationResponse,
    RewardRedemptionRequest,
    RewardRedemptionResponse,
)
from stampcard_api.services.loyalty import (
    CallerContext,
    LoyaltyError,
    LoyaltyErrorCode,
    RewardFulfillmentService,
    RewardRedemptionService,
    authorize_member_read,
    handle_ticket_update,
    list_member_summaries,
)


router = APIRouter(prefix="/loyalty", tags=["loyalty"])


def _http_error(error: LoyaltyError) -> HTTPException:
    return HTTPException(status_code=error.code.http_status, detail=error.as_dict())


@router.post(
    "/triggers/queue-updated",
    response_model=AwardOutcomeResponse,
    dependencies=[Depends(require_internal_api_key)],
)
async def queue_ticket_updated(
    payload: QueueTicketChange,
    session_factory: SessionFactory = Depends(get_session_factory),
) -> AwardOutcomeResponse:
    outcome = await handle_ticket_update(payload, session_factory=session_factory)
    return AwardOutcomeResponse.model_validate(outcome.as_dict())


@router.post("/rewards/redeem", response_model=RewardRedemptionResponse)
async def redeem_reward(
    payload: RewardRedemptionRequest | None = Body(None),
    caller: CallerContext = Depends(get_caller_context),
    session_factory: SessionFactory = Depends(get_session_factory),
) -> RewardRedemptionResponse:
    service = RewardRedemptionService(session_factory)
    reward_code = payload.reward_code if payload is not None else None
    try:
        reward = await service.redeem(caller.uid, reward_code)
    except LoyaltyError as error:
        raise _http_error(error) from error
    except Exception as exc:
        logger.exception("Reward redemption failed unexpectedly", user_id=caller.uid)
        raise _http_error(LoyaltyError(LoyaltyErrorCode.INTERNAL, "Failed to redeem reward")) from exc

    return RewardRedemptionResponse(success=True, reward=RedeemedReward.model_validate(reward.as_dict()))


@router.post("/rewards/apply", response_model=RewardApplicationResponse)
async def apply_reward(
    payload: RewardApplicationRequest,
    caller: CallerContext = Depends(get_caller_context),
    session_factory: SessionFactory = Depends(get_session_factory),
) -> RewardApplicationResponse:
    service = RewardFulfillmentService(session_factory)
    try:
        application = await service.apply(
            caller,
            reward_id=payload.reward_id,
            queue_id=payload.queue_id,
            branch_id=payload.branch_id,
        )
    except LoyaltyError as error:
        raise _http_error(error) from error

    return RewardApplicationResponse(
        success=True,
        rewardId=application.reward_id,
        queueId=application.queue_id,
        discountAmount=application.discount_amount,
        finalPrice=application.final_price,
    )


@router.get("/members/{user_id}/summary", response_model=List[CustomerSummaryResponse])
async def member_summary(
    user_id: str,
    caller: CallerContext = Depends(get_caller_context),
    db: AsyncSession = Depends(get_session),
) -> List[CustomerSummaryResponse]:
    try:
        authorize_member_read(caller, user_id)
    except LoyaltyError as error:
        raise _http_error(error) from error

    summaries = await list_member_summaries(db, user_id)
    return [CustomerSummaryResponse.model_validate(summary) for summary in summaries]


@router.get("/observability")
async def loyalty_observability(request: Request) -> dict[str, Any]:
    scheduler = getattr(request.app.state, "loyalty_job_scheduler", None)
    return {
        "loyalty": get_loyalty_store().snapshot().as_dict(),
        "scheduler": scheduler.health() if scheduler is not None else get_scheduler_store().snapshot().as_dict(),
    }
