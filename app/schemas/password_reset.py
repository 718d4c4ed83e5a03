"""
Pydantic schemas for password reset endpoints.

Request bodies accept the frontend's camelCase keys as well as snake_case.
Email shape and password length are checked by the service so those
failures share the {"error": ...} shape of every other flow error.
"""

from typing import Optional
from pydantic import BaseModel, Field


class ForgotPasswordRequest(BaseModel):
    """Step 1: request a reset code"""
    email: str = Field(..., max_length=320)


class VerifyOtpRequest(BaseModel):
    """Step 2: trade the emailed code for a reset token"""
    email: str = Field(..., max_length=320)
    otp: str = Field(..., max_length=32, description="Numeric code from the reset email")


class ResetPasswordRequest(BaseModel):
    """Step 3: set a new password with the reset token"""
    email: str = Field(..., max_length=320)
    reset_token: str = Field(..., alias="resetToken", max_length=256)
    new_password: str = Field(..., alias="newPassword", max_length=1024)

    class Config:
        populate_by_name = True


class ForgotPasswordResponse(BaseModel):
    """Generic acknowledgment, identical whether or not the account exists"""
    ok: bool = True
    message: str
    cooldown_seconds: int = Field(..., alias="cooldownSeconds")

    class Config:
        populate_by_name = True


class VerifyOtpResponse(BaseModel):
    """Reset token returned exactly once after a correct code"""
    ok: bool = True
    reset_token: str = Field(..., alias="resetToken")
    expires_in: int = Field(..., alias="expiresIn", description="Seconds until the reset token expires")

    class Config:
        populate_by_name = True


class ResetPasswordResponse(BaseModel):
    ok: bool = True
    message: str


class ErrorResponse(BaseModel):
    """Error body for 400/429/500 responses"""
    error: str
    wait_seconds: Optional[int] = Field(None, alias="waitSeconds")
    attempts_remaining: Optional[int] = Field(None, alias="attemptsRemaining")
