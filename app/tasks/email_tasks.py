"""
Celery tasks for password reset emails and record cleanup.

Handles asynchronous email sending with retry logic.
"""

import logging
from datetime import datetime, timedelta, timezone
from celery import shared_task
from app.core.config import settings
from app.core.logging_config import mask_email
from app.services.email_service import email_service

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    name="send_password_reset_code_task",
    max_retries=3,
    default_retry_delay=30,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_jitter=True
)
def send_password_reset_code_task(
    self,
    to_email: str,
    code: str,
    expires_in_minutes: int
):
    """
    Celery task to send a password reset code asynchronously.

    Features:
    - Automatic retry on failure (up to 3 attempts)
    - Exponential backoff with jitter, capped well below the code's TTL

    Args:
        to_email: Recipient email address
        code: Numeric reset code
        expires_in_minutes: Code lifetime shown in the email

    Raises:
        Exception: If email sending fails (triggers a retry)
    """
    masked = mask_email(to_email)
    try:
        logger.info(f"Sending password reset code to {masked} (attempt {self.request.retries + 1})")

        success = email_service.send_password_reset_code(
            to_email=to_email,
            code=code,
            expires_in_minutes=expires_in_minutes
        )

        if not success:
            raise Exception(f"Failed to send password reset code to {masked}")

        return {"status": "success"}

    except Exception as e:
        logger.error(f"Error sending password reset code to {masked}: {str(e)}")

        # If we've exhausted retries, log final failure
        if self.request.retries >= self.max_retries:
            logger.error(f"All retry attempts exhausted for {masked}")

        raise  # Re-raise to trigger Celery retry


@shared_task(name="cleanup_expired_password_resets")
def cleanup_expired_password_resets_task():
    """
    Periodic task to delete stale password reset records.

    Scheduled daily by Celery Beat (see beat_schedule in app/core/celery_app.py).
    Records stay queryable for RESET_RECORD_RETENTION_HOURS so the hourly
    rate-limit windows keep seeing them.
    """
    from app.core.database import SessionLocal
    from app.crud.password_reset import SqlAlchemyResetStore

    db = SessionLocal()
    try:
        store = SqlAlchemyResetStore(db)
        cutoff = datetime.now(timezone.utc) - timedelta(hours=settings.RESET_RECORD_RETENTION_HOURS)
        with store.unit_of_work():
            deleted_count = store.purge_stale(cutoff)
        logger.info(f"Cleaned up {deleted_count} stale password reset records")
        return {"status": "success", "deleted_count": deleted_count}
    except Exception as e:
        logger.error(f"Error cleaning up password reset records: {str(e)}")
        raise
    finally:
        db.close()
