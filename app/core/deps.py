"""
FastAPI dependencies for the password-reset endpoints.

Builds the reset service per request from the configured store backend,
the user directory, the clock and the email sender.
"""

import ipaddress
import logging
from typing import Optional

from fastapi import BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from app.core.api_rate_limiter import (
    RequestRateLimiter,
    get_request_limiter,
    check_forgot_password_ip_limit,
    check_auth_attempt_ip_limit,
)
from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.core.database import get_db
from app.crud.password_reset import ResetRecordStore, SqlAlchemyResetStore, InMemoryResetStore
from app.crud.user import SqlUserDirectory
from app.services.password_reset import PasswordResetService, ResetCodeSender

logger = logging.getLogger(__name__)

# Single-process development backend, shared by every request
_memory_store = InMemoryResetStore()


def _parse_ip(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def get_client_ip(request: Request) -> Optional[str]:
    """
    Determine the client IP used for auditing and rate limiting.

    Uses the socket peer address. X-Real-IP / X-Forwarded-For are consulted
    only when TRUST_FORWARD_HEADERS is set, and with TRUSTED_PROXY_ONLY only
    when the peer itself is a private-range address (the proxy).

    Returns:
        Client IP address, or None if it cannot be determined
    """
    peer = request.client.host if request.client else None
    if not settings.TRUST_FORWARD_HEADERS:
        return peer

    if settings.TRUSTED_PROXY_ONLY:
        peer_ip = _parse_ip(peer)
        if peer_ip is None or not ipaddress.ip_address(peer_ip).is_private:
            return peer

    real_ip = _parse_ip(request.headers.get("X-Real-IP"))
    if real_ip:
        return real_ip

    # X-Forwarded-For can contain multiple IPs, the first is the original client
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first = _parse_ip(forwarded_for.split(",")[0])
        if first:
            return first

    return peer


def get_clock() -> Clock:
    return system_clock


def get_reset_store(db: Session = Depends(get_db)) -> ResetRecordStore:
    """Reset record store selected by RESET_STORE_BACKEND."""
    if settings.RESET_STORE_BACKEND == "memory":
        return _memory_store
    return SqlAlchemyResetStore(db)


def get_reset_code_sender(background_tasks: BackgroundTasks) -> ResetCodeSender:
    """
    Email sender for reset codes.

    Delivery runs as a background task after the response is sent, so
    response time never depends on the mail transport. The returned
    callable reports whether delivery was scheduled.
    """
    expires_in_minutes = settings.RESET_OTP_TTL_MINUTES

    def send(email: str, code: str) -> bool:
        if settings.EMAIL_DELIVERY == "celery":
            # Imported lazily so the API process only touches Celery when configured to
            from app.core.celery_utils import queue_task_safely
            from app.tasks.email_tasks import send_password_reset_code_task

            background_tasks.add_task(
                queue_task_safely,
                send_password_reset_code_task,
                to_email=email,
                code=code,
                expires_in_minutes=expires_in_minutes,
            )
            return True

        if settings.EMAIL_DELIVERY == "direct":
            from app.services.email_service import email_service

            background_tasks.add_task(
                email_service.send_password_reset_code,
                to_email=email,
                code=code,
                expires_in_minutes=expires_in_minutes,
            )
            return True

        logger.warning("EMAIL_DELIVERY is disabled, reset code not sent")
        return False

    return send


def get_password_reset_service(
    db: Session = Depends(get_db),
    store: ResetRecordStore = Depends(get_reset_store),
    send_code: ResetCodeSender = Depends(get_reset_code_sender),
    clock: Clock = Depends(get_clock),
) -> PasswordResetService:
    # The memory store's unit of work does not own the DB session
    users = SqlUserDirectory(db, commit_on_write=not isinstance(store, SqlAlchemyResetStore))
    return PasswordResetService(
        store=store,
        users=users,
        send_code=send_code,
        policy=settings.reset_policy(),
        clock=clock,
    )


def limit_forgot_password_requests(
    client_ip: Optional[str] = Depends(get_client_ip),
    limiter: RequestRateLimiter = Depends(get_request_limiter),
) -> None:
    check_forgot_password_ip_limit(limiter, client_ip)


def limit_auth_attempts(
    client_ip: Optional[str] = Depends(get_client_ip),
    limiter: RequestRateLimiter = Depends(get_request_limiter),
) -> None:
    check_auth_attempt_ip_limit(limiter, client_ip)
