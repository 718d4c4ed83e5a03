"""
Database models package.
"""

from app.models.user import User
from app.models.password_reset import PasswordReset

__all__ = ["User", "PasswordReset"]
