"""
Password reset flow: request -> verify OTP -> reset password.

Step 1 (request_reset) emails a short numeric code. Step 2 (verify_otp)
trades a correct code for a high-entropy reset token. Step 3
(reset_password) trades the token for a password change. Each step runs
as one unit of work against the Reset Record Store.

Anything that could reveal whether an account exists (unknown email,
email delivery failure) collapses into the same generic acknowledgment.
"""

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Iterator, Optional

from app.core.clock import Clock, system_clock
from app.core.config import ResetPolicy
from app.core.exceptions import (
    ResetFlowError,
    ValidationError,
    RateLimited,
    NoActiveRequest,
    InvalidCode,
    LockedOut,
    InvalidOrExpiredToken,
    InternalError,
)
from app.core.logging_config import log_security_event, mask_email
from app.core.otp import generate_otp, generate_reset_token
from app.core.rate_limiter import ResetRateLimiter
from app.core.security import burn_hash_time, get_password_hash, hash_secret, verify_secret
from app.crud.password_reset import ResetRecordStore
from app.crud.user import UserDirectory

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_EMAIL_LENGTH = 320

GENERIC_ACK_MESSAGE = "If this email is registered, you will receive a reset code."
RESET_SUCCESS_MESSAGE = "Password has been reset successfully."

# send(email, code) -> delivered/scheduled
ResetCodeSender = Callable[[str, str], bool]


@dataclass(frozen=True)
class ResetRequestAck:
    """Identical for known and unknown accounts."""
    ok: bool
    message: str
    cooldown_seconds: int


@dataclass(frozen=True)
class ResetTokenGrant:
    ok: bool
    reset_token: str
    expires_in: int


@dataclass(frozen=True)
class ResetResult:
    ok: bool
    message: str


def normalize_email(email: Optional[str]) -> str:
    """Trim and lower-case an email address."""
    return (email or "").strip().lower()


def validate_email(email: Optional[str]) -> str:
    """
    Normalize an email and check its basic shape.

    Raises:
        ValidationError: If the address is missing or malformed
    """
    if not isinstance(email, str) or not email.strip():
        raise ValidationError("Email is required")

    normalized = normalize_email(email)
    if len(normalized) > MAX_EMAIL_LENGTH or not EMAIL_PATTERN.match(normalized):
        raise ValidationError("Invalid email address")
    return normalized


class PasswordResetService:
    """
    Orchestrates the three-step reset protocol.

    Collaborators are injected so the same flow runs over either store
    backend and any email transport.
    """

    def __init__(
        self,
        store: ResetRecordStore,
        users: UserDirectory,
        send_code: ResetCodeSender,
        policy: ResetPolicy,
        clock: Clock = system_clock,
    ):
        self.store = store
        self.users = users
        self.send_code = send_code
        self.policy = policy
        self.clock = clock
        self.limiter = ResetRateLimiter(store, policy, clock)

    @contextmanager
    def _internal_errors(self, operation: str) -> Iterator[None]:
        # Domain errors pass through; anything else becomes a generic 500
        try:
            yield
        except ResetFlowError:
            raise
        except Exception:
            logger.exception(f"Unexpected failure during {operation}")
            raise InternalError()

    def _pad_response(self, started: float) -> None:
        """Sleep until the response-time floor has elapsed since started."""
        floor = self.policy.response_floor_ms / 1000.0
        remaining = floor - (self.clock.monotonic() - started)
        if remaining > 0:
            self.clock.sleep(remaining)

    # --- Step 1: request reset ---
    def request_reset(self, email: str, ip_address: Optional[str]) -> ResetRequestAck:
        """
        Issue a reset code for the email if it belongs to an active account.

        Args:
            email: Address as typed by the client
            ip_address: Client IP (stored for auditing and the per-IP cap)

        Returns:
            ResetRequestAck: the same generic acknowledgment whether or not
            the account exists

        Raises:
            ValidationError: Malformed email
            RateLimited: Cooldown or hourly cap hit
            InternalError: Store or hashing failure
        """
        normalized = validate_email(email)
        masked = mask_email(normalized)
        started = self.clock.monotonic()
        code = None

        with self._internal_errors("request_reset"):
            with self.store.unit_of_work():
                decision = self.limiter.check(normalized, ip_address)
                if not decision.allowed:
                    log_security_event(
                        "RESET_RATE_LIMITED",
                        logging.WARNING,
                        email=masked,
                        ip=ip_address,
                        reason=decision.reason,
                        wait_seconds=decision.wait_seconds,
                    )
                    raise RateLimited(wait_seconds=decision.wait_seconds)

                user = self.users.get_by_email(normalized)
                if user is not None:
                    now = self.clock.now()
                    superseded = self.store.invalidate_active_for_email(normalized)
                    code = generate_otp(self.policy.otp_length)
                    self.store.create(
                        user_id=user.id,
                        email=normalized,
                        otp_hash=hash_secret(code),
                        ip_address=ip_address,
                        created_at=now,
                        expires_at=now + timedelta(minutes=self.policy.otp_ttl_minutes),
                    )
                    if superseded:
                        logger.info(f"Superseded {superseded} earlier reset request(s) for {masked}")

        if code is None:
            # Spend the hashing time a real request would have spent
            burn_hash_time()
            log_security_event("RESET_UNKNOWN_EMAIL", email=masked, ip=ip_address)
        else:
            self._deliver(normalized, code, ip_address)

        self._pad_response(started)

        return ResetRequestAck(
            ok=True,
            message=GENERIC_ACK_MESSAGE,
            cooldown_seconds=self.policy.cooldown_seconds,
        )

    def _deliver(self, email: str, code: str, ip_address: Optional[str]) -> None:
        masked = mask_email(email)
        try:
            delivered = self.send_code(email, code)
        except Exception as e:
            logger.error(f"Reset code delivery raised for {masked}: {e}")
            delivered = False

        if delivered:
            log_security_event("RESET_OTP_SENT", email=masked, ip=ip_address)
        else:
            log_security_event("RESET_EMAIL_FAILED", logging.ERROR, email=masked, ip=ip_address)

    # --- Step 2: verify OTP ---
    def verify_otp(self, email: str, otp: str, ip_address: Optional[str] = None) -> ResetTokenGrant:
        """
        Exchange a correct reset code for a reset token.

        Raises:
            ValidationError: Malformed email or code
            NoActiveRequest: No live, unverified reset record
            LockedOut: Attempts exhausted (record burned)
            InvalidCode: Wrong code, with attempts remaining
            InternalError: Store or hashing failure
        """
        normalized = validate_email(email)
        masked = mask_email(normalized)
        otp = (otp or "").strip()
        # str.isdigit also accepts non-ASCII digits such as fullwidth forms
        if len(otp) != self.policy.otp_length or not (otp.isascii() and otp.isdigit()):
            raise ValidationError(f"Code must be exactly {self.policy.otp_length} digits")

        error: Optional[ResetFlowError] = None
        reset_token = None

        with self._internal_errors("verify_otp"):
            with self.store.unit_of_work():
                now = self.clock.now()
                record = self.store.get_active_otp(normalized, now)

                if record is None:
                    log_security_event("VERIFY_NO_VALID_OTP", email=masked, ip=ip_address)
                    error = NoActiveRequest()

                elif record.attempts >= self.policy.max_attempts:
                    # Checked before comparing, so a capped record never gets a chance to pass
                    self.store.lock_out(record.id)
                    log_security_event(
                        "VERIFY_MAX_ATTEMPTS", logging.WARNING, email=masked, ip=ip_address, attempts=record.attempts
                    )
                    error = LockedOut()

                elif not verify_secret(otp, record.otp_hash):
                    attempts = self.store.register_failed_attempt(record.id, self.policy.max_attempts)
                    if attempts is None:
                        error = NoActiveRequest()
                    elif attempts >= self.policy.max_attempts:
                        log_security_event(
                            "VERIFY_MAX_ATTEMPTS", logging.WARNING, email=masked, ip=ip_address, attempts=attempts
                        )
                        error = LockedOut()
                    else:
                        log_security_event("VERIFY_FAILED", email=masked, ip=ip_address, attempts=attempts)
                        error = InvalidCode(attempts_remaining=self.policy.max_attempts - attempts)

                else:
                    reset_token = generate_reset_token()
                    issued = self.store.issue_reset_token(
                        record.id,
                        token_hash=hash_secret(reset_token),
                        token_expires_at=now + timedelta(minutes=self.policy.reset_token_ttl_minutes),
                        now=now,
                    )
                    if issued:
                        log_security_event("VERIFY_SUCCESS", email=masked, ip=ip_address)
                    else:
                        reset_token = None
                        error = NoActiveRequest()

        # Raised after the unit of work so lockouts and attempt counts are committed
        if error is not None:
            raise error

        return ResetTokenGrant(
            ok=True,
            reset_token=reset_token,
            expires_in=self.policy.reset_token_ttl_minutes * 60,
        )

    # --- Step 3: reset password ---
    def reset_password(
        self,
        email: str,
        reset_token: str,
        new_password: str,
        ip_address: Optional[str] = None,
    ) -> ResetResult:
        """
        Set a new password using a reset token from verify_otp.

        Raises:
            ValidationError: Malformed email or too-short password
            InvalidOrExpiredToken: Token missing, wrong, reused or expired
            InternalError: Store, hashing or user update failure
        """
        normalized = validate_email(email)
        masked = mask_email(normalized)
        if not isinstance(new_password, str) or len(new_password) < self.policy.password_min_length:
            raise ValidationError(
                f"Password must be at least {self.policy.password_min_length} characters"
            )
        if not reset_token:
            raise InvalidOrExpiredToken()

        error: Optional[ResetFlowError] = None
        user_id = None

        with self._internal_errors("reset_password"):
            with self.store.unit_of_work():
                now = self.clock.now()
                record = self.store.get_active_reset_token(normalized, now)

                if record is None:
                    log_security_event("RESET_EXPIRED_TOKEN", email=masked, ip=ip_address)
                    error = InvalidOrExpiredToken()
                elif not verify_secret(reset_token, record.reset_token_hash):
                    log_security_event("RESET_INVALID_TOKEN", logging.WARNING, email=masked, ip=ip_address)
                    error = InvalidOrExpiredToken()
                elif not self.store.consume_reset_token(record.id, now):
                    error = InvalidOrExpiredToken()
                else:
                    user_id = record.user_id
                    if not self.users.update_password_hash(user_id, get_password_hash(new_password)):
                        logger.error(f"Password update matched no user row for user {user_id}")
                        # Rolls back the token consumption with it
                        raise InternalError()
                    self.store.invalidate_all_for_user(user_id)

        if error is not None:
            raise error

        log_security_event(
            "PASSWORD_RESET_COMPLETED",
            user_id=str(user_id),
            ip=ip_address,
            reset_at=now.isoformat(),
        )

        return ResetResult(ok=True, message=RESET_SUCCESS_MESSAGE)
