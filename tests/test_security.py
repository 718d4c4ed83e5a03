"""
Unit tests for security helpers.

Tests:
- Password and secret hashing
- OTP and reset token generation
- Email normalization and masking
- Error response shape
"""

import logging

import pytest

from app.core.exceptions import InvalidCode, RateLimited, InternalError, ValidationError
from app.core.logging_config import mask_email, log_security_event
from app.core.otp import generate_otp, generate_reset_token
from app.core.security import (
    get_password_hash,
    verify_password,
    hash_secret,
    verify_secret,
    burn_hash_time,
)
from app.services.password_reset import normalize_email, validate_email


class TestHashing:
    """Test bcrypt hashing helpers"""

    def test_password_round_trip(self):
        hashed = get_password_hash("SecurePass123!")

        assert hashed != "SecurePass123!"
        assert hashed.startswith("$2")
        assert verify_password("SecurePass123!", hashed)
        assert not verify_password("WrongPass123!", hashed)

    def test_hashes_are_salted(self):
        assert hash_secret("123456") != hash_secret("123456")

    def test_long_password_truncated_to_72_bytes(self):
        base = "a" * 72
        hashed = get_password_hash(base + "tail")

        assert verify_password(base, hashed)

    def test_verify_secret_rejects_empty_and_malformed(self):
        hashed = hash_secret("123456")

        assert verify_secret("123456", hashed)
        assert not verify_secret("", hashed)
        assert not verify_secret("123456", "")
        assert not verify_secret("123456", None)
        assert not verify_secret("123456", "not-a-bcrypt-hash")

    def test_burn_hash_time_runs(self):
        burn_hash_time()
        burn_hash_time()


class TestSecretGeneration:
    """Test OTP and reset token generation"""

    def test_otp_is_numeric_with_requested_length(self):
        for length in (4, 6, 8):
            code = generate_otp(length)
            assert len(code) == length
            assert code.isdigit()

    def test_otp_leading_zeros_possible(self):
        codes = {generate_otp(1) for _ in range(200)}

        assert "0" in codes

    def test_reset_token_is_256_bit_hex(self):
        token = generate_reset_token()

        assert len(token) == 64
        int(token, 16)
        assert generate_reset_token() != token


class TestEmailHandling:
    """Test email normalization, validation and masking"""

    def test_normalize_email(self):
        assert normalize_email("  Alice@Example.COM ") == "alice@example.com"
        assert normalize_email(None) == ""

    def test_validate_email_accepts_and_normalizes(self):
        assert validate_email(" Bob.Smith+reset@Mail.Example.org ") == "bob.smith+reset@mail.example.org"

    @pytest.mark.parametrize("email,message", [
        ("", "Email is required"),
        (None, "Email is required"),
        ("bob", "Invalid email address"),
        ("bob@localhost", "Invalid email address"),
        ("a" * 310 + "@example.com", "Invalid email address"),
    ])
    def test_validate_email_rejects(self, email, message):
        with pytest.raises(ValidationError) as exc_info:
            validate_email(email)

        assert exc_info.value.message == message

    def test_mask_email(self):
        assert mask_email("jane.doe@example.com") == "j***@example.com"
        assert mask_email("not-an-email") == "***"
        assert mask_email("") == "***"

    def test_security_event_carries_structured_fields(self, caplog):
        with caplog.at_level(logging.INFO, logger="security.audit"):
            log_security_event("VERIFY_FAILED", email=mask_email("jane@example.com"), attempts=2)

        record = caplog.records[-1]
        assert record.getMessage() == "[SECURITY] VERIFY_FAILED"
        assert record.security_event == "VERIFY_FAILED"
        assert record.email == "j***@example.com"
        assert record.attempts == 2


class TestFlowErrors:
    """Test domain exception defaults"""

    def test_invalid_code_message(self):
        exc = InvalidCode(attempts_remaining=3)

        assert exc.status_code == 400
        assert exc.message == "Invalid code. 3 attempts remaining."

    def test_rate_limited_message_is_generic(self):
        exc = RateLimited(wait_seconds=42)

        assert exc.status_code == 429
        assert "42" not in exc.message

    def test_internal_error_is_500(self):
        assert InternalError().status_code == 500
