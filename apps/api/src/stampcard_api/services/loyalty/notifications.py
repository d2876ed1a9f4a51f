"""Inbox notifications for generated rewards."""

from __future__ import annotations

from loguru import logger

from stampcard_api.db.atomic import run_atomic
from stampcard_api.db.session import SessionFactory
from stampcard_api.models.notification import Notification, NotificationCategoryEnum

from .program import to_epoch_millis
from .stamps import IssuedReward


class RewardNotifier:
    """Write ``loyalty_reward_generated`` entries picked up by push delivery."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def reward_generated(self, user_id: str, reward: IssuedReward) -> str:
        async def _write(session) -> str:
            notification = Notification(
                user_id=user_id,
                category=NotificationCategoryEnum.LOYALTY_REWARD_GENERATED,
                title="You earned a free service!",
                body=f"Show code {reward.code} at the salon to redeem it.",
                data={
                    "rewardId": reward.reward_id,
                    "rewardCode": reward.code,
                    "franchiseId": reward.franchise_id,
                    "expiresAt": to_epoch_millis(reward.expires_at),
                },
            )
            session.add(notification)
            await session.flush()
            return notification.notification_id

        notification_id = await run_atomic(self._session_factory, _write, label="reward_notification")
        logger.info(
            "Queued reward notification",
            user_id=user_id,
            reward_id=reward.reward_id,
            notification_id=notification_id,
        )
        return notification_id


__all__ = ["RewardNotifier"]
