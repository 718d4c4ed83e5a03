"""
User directory used by the password-reset flow.

The flow only needs two operations on accounts, so it depends on this
narrow interface rather than on the User model directly.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from app.models.user import User


class UserDirectory(ABC):
    """Lookup-by-email and password-hash replacement."""

    @abstractmethod
    def get_by_email(self, email: str) -> Optional[User]:
        """
        Find an active user by normalized email.

        Returns:
            User if found and active, None otherwise
        """
        pass

    @abstractmethod
    def update_password_hash(self, user_id: uuid.UUID, password_hash: str) -> bool:
        """
        Replace the user's password hash.

        Returns:
            bool: True if a user row was updated
        """
        pass


class SqlUserDirectory(UserDirectory):
    """
    User directory over the users table.

    Shares the caller's session, so writes commit with the SQL reset store's
    unit of work. Set commit_on_write when no such unit of work owns the
    session (the in-memory store backend).
    """

    def __init__(self, db: Session, commit_on_write: bool = False):
        self.db = db
        self.commit_on_write = commit_on_write

    def get_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(
            func.lower(User.email) == email,
            User.is_active == True
        ).first()

    def update_password_hash(self, user_id: uuid.UUID, password_hash: str) -> bool:
        updated = self.db.query(User).filter(User.id == user_id).update(
            {"hashed_password": password_hash, "updated_at": datetime.now(timezone.utc)},
            synchronize_session=False
        )
        if self.commit_on_write:
            self.db.commit()
        return updated == 1
