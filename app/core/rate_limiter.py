"""
Store-backed rate limiting for password reset requests.

Prevents abuse of the forgot-password endpoint. Limits are computed from
time-windowed queries over the Reset Record Store instead of in-memory
counters, so they survive restarts and hold across server instances.
"""

import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from app.core.clock import Clock, as_aware_utc, system_clock
from app.core.config import ResetPolicy
from app.crud.password_reset import ResetRecordStore

logger = logging.getLogger(__name__)

WINDOW = timedelta(hours=1)


@dataclass(frozen=True)
class RateLimitDecision:
    """
    Outcome of a rate limit check.

    reason is for logs only and must never reach the client.
    """
    allowed: bool
    wait_seconds: Optional[int] = None
    reason: Optional[str] = None


ALLOWED = RateLimitDecision(allowed=True)


class ResetRateLimiter:
    """
    Cooldown and hourly-cap guard for reset requests.

    Pure read: checking a request never records anything. The record
    inserted by a successful request is what later checks count.
    """

    def __init__(self, store: ResetRecordStore, policy: ResetPolicy, clock: Clock = system_clock):
        self.store = store
        self.policy = policy
        self.clock = clock

    def check(self, email: str, ip_address: Optional[str]) -> RateLimitDecision:
        """
        Check whether a new reset request may be issued.

        Order:
        1. Requests per email in the last hour
        2. Requests per IP in the last hour
        3. Cooldown since the most recent request for the email

        Args:
            email: Normalized email address
            ip_address: Client IP address (None skips the IP cap)

        Returns:
            RateLimitDecision: allowed flag, optional wait estimate, reason
        """
        now = self.clock.now()
        window_start = now - WINDOW

        email_count = self.store.count_created_since_for_email(email, window_start)
        if email_count >= self.policy.max_requests_per_email_per_hour:
            return RateLimitDecision(allowed=False, reason="email_hourly_cap")

        if ip_address:
            ip_count = self.store.count_created_since_for_ip(ip_address, window_start)
            if ip_count >= self.policy.max_requests_per_ip_per_hour:
                return RateLimitDecision(allowed=False, reason="ip_hourly_cap")

        latest = self.store.latest_for_email(email)
        if latest is None:
            return ALLOWED

        elapsed = (now - as_aware_utc(latest.created_at)).total_seconds()
        if elapsed < self.policy.cooldown_seconds:
            wait_seconds = max(1, math.ceil(self.policy.cooldown_seconds - elapsed))
            return RateLimitDecision(allowed=False, wait_seconds=wait_seconds, reason="cooldown")

        return ALLOWED
