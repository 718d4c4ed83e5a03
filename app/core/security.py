"""
Secret hashing utilities.

Passwords, OTP codes and reset tokens are all stored as bcrypt hashes and
compared with the same context, never with plaintext equality.
"""

import logging
from passlib.context import CryptContext
from app.core.config import settings

logger = logging.getLogger(__name__)

# Password hashing context (bcrypt)
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

# Hash of a throwaway value, used to spend the same CPU time on
# unknown-account branches as on real ones
_DUMMY_HASH = None


def _to_bytes(value: str) -> bytes:
    # Bcrypt has a 72-byte limit - truncate if necessary
    return value.encode('utf-8')[:72]


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against a hashed password."""
    return pwd_context.verify(_to_bytes(plain_password), hashed_password)


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.

    Note: Bcrypt has a 72-byte limit. Passwords longer than 72 bytes
    are automatically truncated to comply with this limitation.
    """
    return pwd_context.hash(_to_bytes(password))


def hash_secret(secret: str) -> str:
    """Hash a one-time secret (OTP code or reset token) for storage."""
    return pwd_context.hash(_to_bytes(secret))


def verify_secret(secret: str, secret_hash: str) -> bool:
    """
    Check a client-supplied secret against its stored hash.

    Malformed or empty hashes count as a mismatch instead of raising.
    """
    if not secret or not secret_hash:
        return False
    try:
        return pwd_context.verify(_to_bytes(secret), secret_hash)
    except (ValueError, TypeError):
        logger.warning("Stored secret hash could not be parsed")
        return False


def burn_hash_time() -> None:
    """Run one bcrypt verification against a dummy hash."""
    global _DUMMY_HASH
    if _DUMMY_HASH is None:
        _DUMMY_HASH = pwd_context.hash(b"timing-equalizer")
    pwd_context.verify(b"not-the-secret", _DUMMY_HASH)
