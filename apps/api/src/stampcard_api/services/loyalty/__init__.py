"""Loyalty stamp card service exports."""

from .errors import LoyaltyError, LoyaltyErrorCode  # noqa: F401
from .expiration import ExpirationSweeper, REWARD_LEDGER, STAMP_LEDGER, chunked  # noqa: F401
from .fulfillment import (  # noqa: F401
    CallerContext,
    RewardApplication,
    RewardFulfillmentService,
    authorize_member_read,
)
from .notifications import RewardNotifier  # noqa: F401
from .program import LoyaltyProgram, generate_reward_code, load_program  # noqa: F401
from .redemption import RedeemedRewardView, RewardRedemptionService, transition_reward  # noqa: F401
from .stamps import AwardOutcome, CompletedVisit, IssuedReward, StampAwardService  # noqa: F401
from .summary import (  # noqa: F401
    LoyaltySummaryProjector,
    SummaryCounters,
    SummaryProjector,
    compute_counters,
    list_member_summaries,
    refresh_quietly,
)
from .trigger import handle_ticket_update  # noqa: F401

__all__ = [
    "AwardOutcome",
    "CallerContext",
    "CompletedVisit",
    "ExpirationSweeper",
    "IssuedReward",
    "LoyaltyError",
    "LoyaltyErrorCode",
    "LoyaltyProgram",
    "LoyaltySummaryProjector",
    "RedeemedRewardView",
    "REWARD_LEDGER",
    "RewardApplication",
    "RewardFulfillmentService",
    "RewardNotifier",
    "RewardRedemptionService",
    "STAMP_LEDGER",
    "StampAwardService",
    "SummaryCounters",
    "SummaryProjector",
    "authorize_member_read",
    "chunked",
    "compute_counters",
    "generate_reward_code",
    "handle_ticket_update",
    "list_member_summaries",
    "load_program",
    "refresh_quietly",
    "transition_reward",
]
