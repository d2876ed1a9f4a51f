"""Loyalty job exports."""

from .expiration import expire_rewards_daily, expire_stamps_daily  # noqa: F401

__all__ = ["expire_rewards_daily", "expire_stamps_daily"]
