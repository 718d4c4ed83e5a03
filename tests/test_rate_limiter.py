"""
Unit tests for the reset request rate limiters and client IP resolution.
"""

import uuid
from datetime import timedelta

import fakeredis
import pytest
import redis
from starlette.requests import Request

from app.core.api_rate_limiter import RequestRateLimiter, check_forgot_password_ip_limit
from app.core.config import ResetPolicy, settings
from app.core.deps import get_client_ip
from app.core.exceptions import RateLimited
from app.core.rate_limiter import ResetRateLimiter
from app.crud.password_reset import InMemoryResetStore


@pytest.fixture
def store():
    return InMemoryResetStore()


def _add_request(store, clock, email="alice@example.com", ip="198.51.100.1", seconds_ago=0):
    created_at = clock.now() - timedelta(seconds=seconds_ago)
    return store.create(
        user_id=uuid.uuid4(),
        email=email,
        otp_hash="hash",
        ip_address=ip,
        created_at=created_at,
        expires_at=created_at + timedelta(minutes=10),
    )


class TestResetRateLimiter:

    def test_first_request_allowed(self, store, policy, frozen_clock):
        decision = ResetRateLimiter(store, policy, frozen_clock).check("alice@example.com", "198.51.100.1")

        assert decision.allowed is True
        assert decision.wait_seconds is None

    def test_cooldown_wait_is_rounded_up(self, store, policy, frozen_clock):
        _add_request(store, frozen_clock)
        frozen_clock.advance(29.4)

        decision = ResetRateLimiter(store, policy, frozen_clock).check("alice@example.com", None)

        assert decision.allowed is False
        assert decision.reason == "cooldown"
        assert decision.wait_seconds == 31

    def test_cooldown_wait_is_at_least_one_second(self, store, policy, frozen_clock):
        _add_request(store, frozen_clock)
        frozen_clock.advance(59.9)

        decision = ResetRateLimiter(store, policy, frozen_clock).check("alice@example.com", None)

        assert decision.wait_seconds == 1

    def test_cooldown_over(self, store, policy, frozen_clock):
        _add_request(store, frozen_clock, seconds_ago=60)

        assert ResetRateLimiter(store, policy, frozen_clock).check("alice@example.com", None).allowed

    def test_email_hourly_cap(self, store, policy, frozen_clock):
        for seconds_ago in (3000, 2000, 1000):
            _add_request(store, frozen_clock, seconds_ago=seconds_ago)

        decision = ResetRateLimiter(store, policy, frozen_clock).check("alice@example.com", None)

        assert decision.allowed is False
        assert decision.reason == "email_hourly_cap"
        assert decision.wait_seconds is None

    def test_requests_older_than_an_hour_not_counted(self, store, policy, frozen_clock):
        for seconds_ago in (4000, 2000, 1000):
            _add_request(store, frozen_clock, seconds_ago=seconds_ago)

        assert ResetRateLimiter(store, policy, frozen_clock).check("alice@example.com", None).allowed

    def test_ip_hourly_cap(self, store, frozen_clock):
        policy = ResetPolicy(max_requests_per_ip_per_hour=2)
        _add_request(store, frozen_clock, email="a@example.com", seconds_ago=500)
        _add_request(store, frozen_clock, email="b@example.com", seconds_ago=400)
        limiter = ResetRateLimiter(store, policy, frozen_clock)

        decision = limiter.check("c@example.com", "198.51.100.1")

        assert decision.allowed is False
        assert decision.reason == "ip_hourly_cap"
        # Unknown client IP skips the per-IP cap
        assert limiter.check("c@example.com", None).allowed

    def test_email_cap_checked_before_cooldown(self, store, policy, frozen_clock):
        for seconds_ago in (120, 60, 10):
            _add_request(store, frozen_clock, seconds_ago=seconds_ago)

        decision = ResetRateLimiter(store, policy, frozen_clock).check("alice@example.com", None)

        assert decision.reason == "email_hourly_cap"

    def test_check_does_not_record(self, store, policy, frozen_clock):
        limiter = ResetRateLimiter(store, policy, frozen_clock)
        for _ in range(5):
            assert limiter.check("alice@example.com", "198.51.100.1").allowed

        assert store.count_created_since_for_email("alice@example.com", frozen_clock.now() - timedelta(hours=1)) == 0


class UnreachableRedis:
    def incr(self, key):
        raise redis.ConnectionError("Connection refused")

    def delete(self, key):
        raise redis.ConnectionError("Connection refused")


class TestRequestRateLimiter:

    @pytest.fixture
    def limiter(self):
        return RequestRateLimiter(fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True))

    def test_blocks_after_max_requests(self, limiter):
        for _ in range(3):
            limiter.check_rate_limit("reset:auth:198.51.100.1", max_requests=3, window_seconds=900)

        with pytest.raises(RateLimited) as exc_info:
            limiter.check_rate_limit("reset:auth:198.51.100.1", max_requests=3, window_seconds=900)

        assert 0 < exc_info.value.wait_seconds <= 900

    def test_window_expiry_is_set_on_first_hit(self, limiter):
        limiter.check_rate_limit("reset:auth:198.51.100.1", max_requests=3, window_seconds=900)

        assert 0 < limiter.redis_client.ttl("reset:auth:198.51.100.1") <= 900

    def test_keys_are_independent(self, limiter):
        for _ in range(3):
            limiter.check_rate_limit("reset:auth:198.51.100.1", max_requests=3, window_seconds=900)

        limiter.check_rate_limit("reset:auth:198.51.100.2", max_requests=3, window_seconds=900)

    def test_reset_limit_clears_counter(self, limiter):
        for _ in range(3):
            limiter.check_rate_limit("reset:auth:198.51.100.1", max_requests=3, window_seconds=900)

        limiter.reset_limit("reset:auth:198.51.100.1")

        limiter.check_rate_limit("reset:auth:198.51.100.1", max_requests=3, window_seconds=900)

    def test_unreachable_redis_lets_requests_through(self):
        limiter = RequestRateLimiter(UnreachableRedis())

        for _ in range(5):
            limiter.check_rate_limit("reset:auth:198.51.100.1", max_requests=1, window_seconds=900)
        limiter.reset_limit("reset:auth:198.51.100.1")

    def test_forgot_password_uses_ip_hour_cap(self, limiter):
        for _ in range(settings.RESET_MAX_REQUESTS_PER_IP_HOUR):
            check_forgot_password_ip_limit(limiter, "198.51.100.1")

        with pytest.raises(RateLimited):
            check_forgot_password_ip_limit(limiter, "198.51.100.1")

        assert limiter.redis_client.ttl("reset:forgot:198.51.100.1") <= 3600


def _request(peer="10.0.0.5", **headers):
    return Request({
        "type": "http",
        "headers": [(name.replace("_", "-").lower().encode(), value.encode()) for name, value in headers.items()],
        "client": (peer, 43210) if peer else None,
    })


class TestClientIp:

    def test_peer_used_by_default(self):
        assert get_client_ip(_request(x_forwarded_for="203.0.113.7")) == "10.0.0.5"

    def test_missing_peer(self):
        assert get_client_ip(_request(peer=None)) is None

    def test_forwarded_header_from_private_proxy(self, monkeypatch):
        monkeypatch.setattr(settings, "TRUST_FORWARD_HEADERS", True)

        request = _request(x_forwarded_for="203.0.113.7, 10.0.0.1")

        assert get_client_ip(request) == "203.0.113.7"

    def test_forwarded_header_from_public_peer_ignored(self, monkeypatch):
        monkeypatch.setattr(settings, "TRUST_FORWARD_HEADERS", True)

        request = _request(peer="198.51.100.20", x_forwarded_for="203.0.113.7")

        assert get_client_ip(request) == "198.51.100.20"

    def test_public_peer_trusted_when_proxy_check_disabled(self, monkeypatch):
        monkeypatch.setattr(settings, "TRUST_FORWARD_HEADERS", True)
        monkeypatch.setattr(settings, "TRUSTED_PROXY_ONLY", False)

        request = _request(peer="198.51.100.20", x_forwarded_for="203.0.113.7")

        assert get_client_ip(request) == "203.0.113.7"

    def test_real_ip_header_preferred(self, monkeypatch):
        monkeypatch.setattr(settings, "TRUST_FORWARD_HEADERS", True)

        request = _request(x_real_ip="203.0.113.9", x_forwarded_for="203.0.113.7")

        assert get_client_ip(request) == "203.0.113.9"

    def test_garbage_header_falls_back_to_peer(self, monkeypatch):
        monkeypatch.setattr(settings, "TRUST_FORWARD_HEADERS", True)

        request = _request(x_forwarded_for="not-an-ip")

        assert get_client_ip(request) == "10.0.0.5"
