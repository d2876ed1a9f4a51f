from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class QueueTicketChange(BaseModel):
    """Queue ticket change delivered by the queue service."""

    model_config = ConfigDict(populate_by_name=True)

    ticket_id: str = Field(..., alias="ticketId", min_length=1)
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None


class IssuedRewardResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reward_id: str = Field(..., alias="rewardId")
    code: str
    service_id: str | None = Field(None, alias="serviceId")
    value: float
    expires_at: int | None = Field(None, alias="expiresAt")
    stamp_ids: list[str] = Field(default_factory=list, alias="stampIds")


class AwardOutcomeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["skipped", "duplicate", "awarded", "error"]
    ticket_id: str = Field(..., alias="ticketId")
    reason: str | None = None
    stamp_id: str | None = Field(None, alias="stampId")
    reward: IssuedRewardResponse | None = None


class RewardRedemptionRequest(BaseModel):
    # Left untyped so non-string payloads surface as invalid-argument errors.
    reward_code: Any = Field(None, alias="rewardCode")

    model_config = ConfigDict(populate_by_name=True)


class RedeemedReward(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reward_id: str = Field(..., alias="rewardId")
    code: str
    user_id: str = Field(..., alias="userId")
    franchise_id: str = Field(..., alias="franchiseId")
    service_id: str | None = Field(None, alias="serviceId")
    value: float
    expires_at: int | None = Field(None, alias="expiresAt")


class RewardRedemptionResponse(BaseModel):
    success: bool = True
    reward: RedeemedReward


class RewardApplicationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reward_id: str | None = Field(None, alias="rewardId")
    queue_id: str | None = Field(None, alias="queueId")
    branch_id: str | None = Field(None, alias="branchId")


class RewardApplicationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    reward_id: str = Field(..., alias="rewardId")
    queue_id: str = Field(..., alias="queueId")
    discount_amount: float = Field(..., alias="discountAmount")
    final_price: float = Field(..., alias="finalPrice")


class CustomerSummaryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    user_id: str = Field(..., alias="userId")
    franchise_id: str = Field(..., alias="franchiseId")
    active_stamps: int = Field(..., alias="activeStamps")
    total_stamps_earned: int = Field(..., alias="totalStampsEarned")
    total_rewards_generated: int = Field(..., alias="totalRewardsGenerated")
    total_rewards_redeemed: int = Field(..., alias="totalRewardsRedeemed")
    total_rewards_expired: int = Field(..., alias="totalRewardsExpired")
    stamps_required: int = Field(..., alias="stampsRequired")
    progress_percentage: float = Field(..., alias="progressPercentage")
    active_reward_ids: list[str] = Field(default_factory=list, alias="activeRewardIds")
    last_stamp_at: datetime | None = Field(None, alias="lastStampAt")
    last_reward_at: datetime | None = Field(None, alias="lastRewardAt")
    updated_at: datetime | None = Field(None, alias="updatedAt")


class LoyaltyErrorDetail(BaseModel):
    code: str
    message: str
    reason: str | None = None


__all__ = [
    "AwardOutcomeResponse",
    "CustomerSummaryResponse",
    "IssuedRewardResponse",
    "LoyaltyErrorDetail",
    "QueueTicketChange",
    "RedeemedReward",
    "RewardApplicationRequest",
    "RewardApplicationResponse",
    "RewardRedemptionRequest",
    "RewardRedemptionResponse",
]
