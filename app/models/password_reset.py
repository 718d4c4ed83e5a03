"""
Password reset model: one row per reset attempt cycle.

A row moves through two phases on the same record:
1. OTP phase: otp_hash set, valid until expires_at
2. Token phase: after the OTP is verified, reset_token_hash is set and
   valid until reset_token_expires_at

used flips to True exactly once (success, lockout, or superseded by a
newer request) and never back.
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Boolean, DateTime, Integer, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from app.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PasswordReset(Base):
    """
    Password reset attempt.

    Features:
    - bcrypt-hashed 6-digit OTP (never stored in plaintext)
    - 10-minute OTP expiration, 5-minute reset token expiration
    - Attempt tracking for brute force protection
    - Single-use enforcement for both secrets
    - Indexed by email and IP for time-windowed rate limiting
    """
    __tablename__ = "password_resets"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Normalized (trimmed, lower-cased) address at request time
    email = Column(String(320), nullable=False)

    # OTP phase
    otp_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    otp_verified_at = Column(DateTime(timezone=True), nullable=True)

    # Security features
    attempts = Column(Integer, nullable=False, default=0)
    used = Column(Boolean, nullable=False, default=False)
    ip_address = Column(String(64), nullable=True)

    # Token phase
    reset_token_hash = Column(String(255), nullable=True)
    reset_token_expires_at = Column(DateTime(timezone=True), nullable=True)
    reset_token_consumed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('ix_password_resets_email_created_at', 'email', 'created_at'),
        Index('ix_password_resets_ip_created_at', 'ip_address', 'created_at'),
        Index('ix_password_resets_expires_at', 'expires_at'),
    )

    def __repr__(self):
        # Hashes and email stay out of reprs so they cannot leak into logs
        return f"<PasswordReset(id={self.id}, used={self.used}, attempts={self.attempts})>"
