"""
Reset Record Store: persistence for password reset attempts.

Implements the Repository pattern behind one interface with two backends,
selected once at startup by settings.RESET_STORE_BACKEND:
- SqlAlchemyResetStore: PostgreSQL in production, SQLite in development/tests
- InMemoryResetStore: single-process development only

Every mutation is a single conditional update whose affected-row count
decides the outcome, so two concurrent requests can never both observe
"still active" and both proceed.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, Optional

from sqlalchemy import func, or_, and_, text
from sqlalchemy.orm import Session

from app.core.clock import as_aware_utc
from app.models.password_reset import PasswordReset


class ResetRecordStore(ABC):
    """
    Storage interface for PasswordReset records.

    Callers wrap each flow step in unit_of_work(); methods never commit on
    their own.
    """

    backend_name: str = "abstract"

    @abstractmethod
    @contextmanager
    def unit_of_work(self) -> Iterator["ResetRecordStore"]:
        """Commit everything done inside the block, or roll it all back."""

    # Queries used by the rate limiter

    @abstractmethod
    def count_created_since_for_email(self, email: str, since: datetime) -> int:
        pass

    @abstractmethod
    def count_created_since_for_ip(self, ip_address: str, since: datetime) -> int:
        pass

    @abstractmethod
    def latest_for_email(self, email: str) -> Optional[PasswordReset]:
        """Most recent record for the email, whatever its status."""

    # OTP phase

    @abstractmethod
    def invalidate_active_for_email(self, email: str) -> int:
        """Set used=True on every unused record for the email. Returns count."""

    @abstractmethod
    def create(
        self,
        user_id: uuid.UUID,
        email: str,
        otp_hash: str,
        ip_address: Optional[str],
        created_at: datetime,
        expires_at: datetime,
    ) -> PasswordReset:
        pass

    @abstractmethod
    def get_active_otp(self, email: str, now: datetime) -> Optional[PasswordReset]:
        """Newest unused, unexpired record whose OTP has not been verified yet."""

    @abstractmethod
    def lock_out(self, record_id: uuid.UUID) -> bool:
        """Burn the record (used=True). False if it was already used."""

    @abstractmethod
    def register_failed_attempt(self, record_id: uuid.UUID, max_attempts: int) -> Optional[int]:
        """
        Atomically increment attempts, setting used=True when the new count
        reaches max_attempts.

        Returns:
            The new attempts count, or None if the record was no longer
            active (already used or already at the cap).
        """

    @abstractmethod
    def issue_reset_token(
        self,
        record_id: uuid.UUID,
        token_hash: str,
        token_expires_at: datetime,
        now: datetime,
    ) -> bool:
        """Move an active OTP record into the token phase. False if it lost a race."""

    # Token phase

    @abstractmethod
    def get_active_reset_token(self, email: str, now: datetime) -> Optional[PasswordReset]:
        """Newest unused record holding an unconsumed, unexpired reset token."""

    @abstractmethod
    def consume_reset_token(self, record_id: uuid.UUID, now: datetime) -> bool:
        """Burn the reset token (used=True). False if it was already consumed."""

    @abstractmethod
    def invalidate_all_for_user(self, user_id: uuid.UUID) -> int:
        pass

    # Maintenance

    @abstractmethod
    def ping(self) -> None:
        """Raise if the backend is unreachable."""

    @abstractmethod
    def purge_stale(self, older_than: datetime) -> int:
        """
        Delete records created before older_than that can no longer be used
        (used, or past both the OTP and token expiry).
        """


class SqlAlchemyResetStore(ResetRecordStore):
    """
    SQLAlchemy-backed store.

    Conditional updates run as single UPDATE statements; the database's
    row-level locking makes each one an atomic read-modify-write.
    """

    backend_name = "sql"

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def unit_of_work(self) -> Iterator["SqlAlchemyResetStore"]:
        try:
            yield self
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def count_created_since_for_email(self, email: str, since: datetime) -> int:
        return self.db.query(func.count(PasswordReset.id)).filter(
            PasswordReset.email == email,
            PasswordReset.created_at > since
        ).scalar() or 0

    def count_created_since_for_ip(self, ip_address: str, since: datetime) -> int:
        return self.db.query(func.count(PasswordReset.id)).filter(
            PasswordReset.ip_address == ip_address,
            PasswordReset.created_at > since
        ).scalar() or 0

    def latest_for_email(self, email: str) -> Optional[PasswordReset]:
        return self.db.query(PasswordReset).filter(
            PasswordReset.email == email
        ).order_by(PasswordReset.created_at.desc()).first()

    def invalidate_active_for_email(self, email: str) -> int:
        return self.db.query(PasswordReset).filter(
            PasswordReset.email == email,
            PasswordReset.used == False
        ).update({"used": True}, synchronize_session=False)

    def create(self, user_id, email, otp_hash, ip_address, created_at, expires_at) -> PasswordReset:
        record = PasswordReset(
            id=uuid.uuid4(),
            user_id=user_id,
            email=email,
            otp_hash=otp_hash,
            created_at=created_at,
            expires_at=expires_at,
            attempts=0,
            used=False,
            ip_address=ip_address,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def get_active_otp(self, email: str, now: datetime) -> Optional[PasswordReset]:
        return self.db.query(PasswordReset).filter(
            PasswordReset.email == email,
            PasswordReset.used == False,
            PasswordReset.otp_verified_at.is_(None),
            PasswordReset.expires_at > now
        ).order_by(PasswordReset.created_at.desc()).first()

    def lock_out(self, record_id: uuid.UUID) -> bool:
        updated = self.db.query(PasswordReset).filter(
            PasswordReset.id == record_id,
            PasswordReset.used == False
        ).update({"used": True}, synchronize_session=False)
        return updated == 1

    def register_failed_attempt(self, record_id: uuid.UUID, max_attempts: int) -> Optional[int]:
        # One statement: both SET expressions read the pre-update attempts value
        updated = self.db.query(PasswordReset).filter(
            PasswordReset.id == record_id,
            PasswordReset.used == False,
            PasswordReset.attempts < max_attempts
        ).update(
            {
                PasswordReset.attempts: PasswordReset.attempts + 1,
                PasswordReset.used: PasswordReset.attempts + 1 >= max_attempts,
            },
            synchronize_session=False
        )
        if updated != 1:
            return None

        return self.db.query(PasswordReset.attempts).filter(
            PasswordReset.id == record_id
        ).scalar()

    def issue_reset_token(self, record_id, token_hash, token_expires_at, now) -> bool:
        updated = self.db.query(PasswordReset).filter(
            PasswordReset.id == record_id,
            PasswordReset.used == False,
            PasswordReset.otp_verified_at.is_(None)
        ).update(
            {
                "reset_token_hash": token_hash,
                "reset_token_expires_at": token_expires_at,
                "otp_verified_at": now,
            },
            synchronize_session=False
        )
        return updated == 1

    def get_active_reset_token(self, email: str, now: datetime) -> Optional[PasswordReset]:
        return self.db.query(PasswordReset).filter(
            PasswordReset.email == email,
            PasswordReset.used == False,
            PasswordReset.reset_token_hash.isnot(None),
            PasswordReset.reset_token_consumed_at.is_(None),
            PasswordReset.reset_token_expires_at > now
        ).order_by(PasswordReset.created_at.desc()).first()

    def consume_reset_token(self, record_id: uuid.UUID, now: datetime) -> bool:
        updated = self.db.query(PasswordReset).filter(
            PasswordReset.id == record_id,
            PasswordReset.used == False,
            PasswordReset.reset_token_hash.isnot(None),
            PasswordReset.reset_token_consumed_at.is_(None)
        ).update(
            {"used": True, "reset_token_consumed_at": now},
            synchronize_session=False
        )
        return updated == 1

    def invalidate_all_for_user(self, user_id: uuid.UUID) -> int:
        return self.db.query(PasswordReset).filter(
            PasswordReset.user_id == user_id,
            PasswordReset.used == False
        ).update({"used": True}, synchronize_session=False)

    def purge_stale(self, older_than: datetime) -> int:
        return self.db.query(PasswordReset).filter(
            PasswordReset.created_at < older_than,
            or_(
                PasswordReset.used == True,
                and_(
                    PasswordReset.expires_at < older_than,
                    or_(
                        PasswordReset.reset_token_expires_at.is_(None),
                        PasswordReset.reset_token_expires_at < older_than
                    )
                )
            )
        ).delete(synchronize_session=False)

    def ping(self) -> None:
        self.db.execute(text("SELECT 1"))


class InMemoryResetStore(ResetRecordStore):
    """
    Process-local store for development and tests.

    A re-entrant lock serializes every call, and unit_of_work() holds it for
    the whole block, so each flow step is atomic within this process. State
    is lost on restart and not shared between workers.
    """

    backend_name = "memory"

    _COLUMNS = [column.key for column in PasswordReset.__table__.columns]

    def __init__(self):
        self._records: Dict[uuid.UUID, PasswordReset] = {}
        self._lock = threading.RLock()

    @contextmanager
    def unit_of_work(self) -> Iterator["InMemoryResetStore"]:
        with self._lock:
            snapshot = {
                record_id: {key: getattr(record, key) for key in self._COLUMNS}
                for record_id, record in self._records.items()
            }
            try:
                yield self
            except Exception:
                self._restore(snapshot)
                raise

    def _restore(self, snapshot: Dict[uuid.UUID, dict]) -> None:
        self._records = {
            record_id: self._records.get(record_id) or PasswordReset()
            for record_id in snapshot
        }
        for record_id, values in snapshot.items():
            for key, value in values.items():
                setattr(self._records[record_id], key, value)

    def _for_email(self, email: str):
        return [r for r in self._records.values() if r.email == email]

    @staticmethod
    def _newest(records) -> Optional[PasswordReset]:
        if not records:
            return None
        return max(records, key=lambda r: as_aware_utc(r.created_at))

    def count_created_since_for_email(self, email: str, since: datetime) -> int:
        with self._lock:
            return sum(1 for r in self._for_email(email) if as_aware_utc(r.created_at) > since)

    def count_created_since_for_ip(self, ip_address: str, since: datetime) -> int:
        with self._lock:
            return sum(
                1 for r in self._records.values()
                if r.ip_address == ip_address and as_aware_utc(r.created_at) > since
            )

    def latest_for_email(self, email: str) -> Optional[PasswordReset]:
        with self._lock:
            return self._newest(self._for_email(email))

    def invalidate_active_for_email(self, email: str) -> int:
        with self._lock:
            count = 0
            for record in self._for_email(email):
                if not record.used:
                    record.used = True
                    count += 1
            return count

    def create(self, user_id, email, otp_hash, ip_address, created_at, expires_at) -> PasswordReset:
        record = PasswordReset(
            id=uuid.uuid4(),
            user_id=user_id,
            email=email,
            otp_hash=otp_hash,
            created_at=created_at,
            expires_at=expires_at,
            otp_verified_at=None,
            attempts=0,
            used=False,
            ip_address=ip_address,
            reset_token_hash=None,
            reset_token_expires_at=None,
            reset_token_consumed_at=None,
        )
        with self._lock:
            self._records[record.id] = record
        return record

    def get_active_otp(self, email: str, now: datetime) -> Optional[PasswordReset]:
        with self._lock:
            return self._newest([
                r for r in self._for_email(email)
                if not r.used and r.otp_verified_at is None and as_aware_utc(r.expires_at) > now
            ])

    def lock_out(self, record_id: uuid.UUID) -> bool:
        with self._lock:
            record = self._records.get(record_id)
            if record is None or record.used:
                return False
            record.used = True
            return True

    def register_failed_attempt(self, record_id: uuid.UUID, max_attempts: int) -> Optional[int]:
        with self._lock:
            record = self._records.get(record_id)
            if record is None or record.used or record.attempts >= max_attempts:
                return None
            record.attempts += 1
            if record.attempts >= max_attempts:
                record.used = True
            return record.attempts

    def issue_reset_token(self, record_id, token_hash, token_expires_at, now) -> bool:
        with self._lock:
            record = self._records.get(record_id)
            if record is None or record.used or record.otp_verified_at is not None:
                return False
            record.reset_token_hash = token_hash
            record.reset_token_expires_at = token_expires_at
            record.otp_verified_at = now
            return True

    def get_active_reset_token(self, email: str, now: datetime) -> Optional[PasswordReset]:
        with self._lock:
            return self._newest([
                r for r in self._for_email(email)
                if not r.used
                and r.reset_token_hash is not None
                and r.reset_token_consumed_at is None
                and as_aware_utc(r.reset_token_expires_at) > now
            ])

    def consume_reset_token(self, record_id: uuid.UUID, now: datetime) -> bool:
        with self._lock:
            record = self._records.get(record_id)
            if (
                record is None
                or record.used
                or record.reset_token_hash is None
                or record.reset_token_consumed_at is not None
            ):
                return False
            record.used = True
            record.reset_token_consumed_at = now
            return True

    def invalidate_all_for_user(self, user_id: uuid.UUID) -> int:
        with self._lock:
            count = 0
            for record in self._records.values():
                if record.user_id == user_id and not record.used:
                    record.used = True
                    count += 1
            return count

    def purge_stale(self, older_than: datetime) -> int:
        with self._lock:
            stale = [
                record_id for record_id, r in self._records.items()
                if as_aware_utc(r.created_at) < older_than and (
                    r.used or (
                        as_aware_utc(r.expires_at) < older_than
                        and (
                            r.reset_token_expires_at is None
                            or as_aware_utc(r.reset_token_expires_at) < older_than
                        )
                    )
                )
            ]
            for record_id in stale:
                del self._records[record_id]
            return len(stale)

    def ping(self) -> None:
        return None
