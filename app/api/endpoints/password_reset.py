"""
Password reset endpoints.

Three-step flow: request a code by email, verify the code for a reset
token, then set a new password with the token. Errors are raised as
ResetFlowError subclasses and rendered by the global exception handlers.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status

from app.core.deps import (
    get_client_ip,
    get_password_reset_service,
    limit_auth_attempts,
    limit_forgot_password_requests,
)
from app.schemas.password_reset import (
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    VerifyOtpRequest,
    VerifyOtpResponse,
    ResetPasswordRequest,
    ResetPasswordResponse,
    ErrorResponse,
)
from app.services.password_reset import PasswordResetService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Password Reset"])


@router.post(
    "/forgot-password",
    response_model=ForgotPasswordResponse,
    status_code=status.HTTP_200_OK,
    responses={400: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
    dependencies=[Depends(limit_forgot_password_requests)],
)
def forgot_password(
    payload: ForgotPasswordRequest,
    client_ip: Optional[str] = Depends(get_client_ip),
    service: PasswordResetService = Depends(get_password_reset_service),
):
    """
    Request a password reset code.

    Always answers with the same acknowledgment whether or not the email
    belongs to an account.
    """
    ack = service.request_reset(payload.email, client_ip)
    return ForgotPasswordResponse(
        ok=ack.ok,
        message=ack.message,
        cooldown_seconds=ack.cooldown_seconds,
    )


@router.post(
    "/verify-otp",
    response_model=VerifyOtpResponse,
    status_code=status.HTTP_200_OK,
    responses={400: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
    dependencies=[Depends(limit_auth_attempts)],
)
def verify_otp(
    payload: VerifyOtpRequest,
    client_ip: Optional[str] = Depends(get_client_ip),
    service: PasswordResetService = Depends(get_password_reset_service),
):
    """Verify the emailed code and receive a short-lived reset token."""
    grant = service.verify_otp(payload.email, payload.otp, ip_address=client_ip)
    return VerifyOtpResponse(
        ok=grant.ok,
        reset_token=grant.reset_token,
        expires_in=grant.expires_in,
    )


@router.post(
    "/reset-password",
    response_model=ResetPasswordResponse,
    status_code=status.HTTP_200_OK,
    responses={400: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
    dependencies=[Depends(limit_auth_attempts)],
)
def reset_password(
    payload: ResetPasswordRequest,
    client_ip: Optional[str] = Depends(get_client_ip),
    service: PasswordResetService = Depends(get_password_reset_service),
):
    """Set a new password using the reset token from verify-otp."""
    result = service.reset_password(
        payload.email,
        payload.reset_token,
        payload.new_password,
        ip_address=client_ip,
    )
    return ResetPasswordResponse(ok=result.ok, message=result.message)
