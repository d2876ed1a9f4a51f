"""Scheduling utilities for the recurring loyalty sweepers."""

from .config import JobDefinition, RetryPolicy, load_job_definitions
from .runner import LoyaltyJobScheduler

__all__ = ["JobDefinition", "LoyaltyJobScheduler", "RetryPolicy", "load_job_definitions"]
