"""
Generation of password-reset secrets.

Both secrets come from the secrets module (OS CSPRNG):
- the OTP is a short numeric code delivered by email
- the reset token is a 256-bit hex string returned once after OTP success
"""

import secrets

CODE_ALPHABET = '0123456789'
RESET_TOKEN_BYTES = 32


def generate_otp(length: int = 6) -> str:
    """
    Generate a secure numeric one-time code.

    Leading zeros are allowed, so every code in the 10**length space is
    equally likely.

    Args:
        length: Number of digits (default 6)

    Returns:
        str: Numeric code (e.g., "042917")
    """
    return ''.join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_reset_token() -> str:
    """Generate the reset token (32 random bytes, hex encoded)."""
    return secrets.token_hex(RESET_TOKEN_BYTES)
