from dataclasses import dataclass
from pydantic_settings import BaseSettings
from typing import List, Optional, Union
from pydantic import field_validator, ValidationInfo
import json


CHOICES = {
    "RESET_STORE_BACKEND": ("sql", "memory"),
    "EMAIL_DELIVERY": ("direct", "celery", "disabled"),
}


@dataclass(frozen=True)
class ResetPolicy:
    """Tunable limits of the password-reset flow."""
    otp_length: int = 6
    otp_ttl_minutes: int = 10
    reset_token_ttl_minutes: int = 5
    cooldown_seconds: int = 60
    max_attempts: int = 5
    max_requests_per_email_per_hour: int = 3
    max_requests_per_ip_per_hour: int = 10
    response_floor_ms: int = 300
    password_min_length: int = 8


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # API Settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Marketplace Auth API"
    DEBUG: bool = False

    # Database Settings
    POSTGRES_USER: str = "user"
    POSTGRES_PASSWORD: str = "password"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "marketplace_db"

    # Full URL wins over the POSTGRES_* parts (e.g. sqlite:///./dev.db)
    DATABASE_URL_OVERRIDE: Optional[str] = None

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Redis Settings (for Celery task queue)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    @property
    def REDIS_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # AWS SES Settings
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_SES_FROM_EMAIL: str = "noreply@mundocerca.com"
    AWS_SES_FROM_NAME: str = "MundoCerca"

    # direct: SES after the response, celery: queue a task, disabled: never send
    EMAIL_DELIVERY: str = "direct"

    # Logging
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = True

    # Password hashing cost (bcrypt log rounds)
    BCRYPT_ROUNDS: int = 12

    # Password reset flow
    RESET_OTP_LENGTH: int = 6
    RESET_OTP_TTL_MINUTES: int = 10
    RESET_TOKEN_TTL_MINUTES: int = 5
    RESET_RESEND_COOLDOWN_SECONDS: int = 60
    RESET_MAX_VERIFY_ATTEMPTS: int = 5
    RESET_MAX_REQUESTS_PER_EMAIL_HOUR: int = 3
    RESET_MAX_REQUESTS_PER_IP_HOUR: int = 10
    RESET_RESPONSE_FLOOR_MS: int = 300
    RESET_PASSWORD_MIN_LENGTH: int = 8
    RESET_RECORD_RETENTION_HOURS: int = 24

    # sql: SQLAlchemy (PostgreSQL/SQLite), memory: process-local, development only
    RESET_STORE_BACKEND: str = "sql"

    # Request-level throttling per client IP (Redis counters)
    # forgot-password reuses RESET_MAX_REQUESTS_PER_IP_HOUR over one hour
    AUTH_RATE_LIMIT_REQUESTS: int = 10
    AUTH_RATE_LIMIT_WINDOW_SECONDS: int = 900

    # Client IP resolution. Forwarded headers are ignored unless enabled,
    # and with TRUSTED_PROXY_ONLY only honoured from a private-range peer.
    TRUST_FORWARD_HEADERS: bool = False
    TRUSTED_PROXY_ONLY: bool = True

    # CORS Settings - can be set as JSON string in .env
    BACKEND_CORS_ORIGINS: Union[List[str], str] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Union[List[str], str]) -> List[str]:
        """Parse CORS origins from JSON string or list"""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                # If not valid JSON, split by comma
                return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("RESET_STORE_BACKEND", "EMAIL_DELIVERY")
    @classmethod
    def normalize_choice(cls, v: str, info: ValidationInfo) -> str:
        v = v.strip().lower()
        allowed = CHOICES[info.field_name]
        if v not in allowed:
            raise ValueError(f"{info.field_name} must be one of: {', '.join(allowed)}")
        return v

    @field_validator("RESET_OTP_LENGTH")
    @classmethod
    def validate_otp_length(cls, v: int) -> int:
        if not 4 <= v <= 10:
            raise ValueError("RESET_OTP_LENGTH must be between 4 and 10")
        return v

    @field_validator("RESET_RECORD_RETENTION_HOURS")
    @classmethod
    def validate_retention(cls, v: int) -> int:
        if v < 1:
            raise ValueError("RESET_RECORD_RETENTION_HOURS must be at least 1")
        return v

    def reset_policy(self) -> ResetPolicy:
        return ResetPolicy(
            otp_length=self.RESET_OTP_LENGTH,
            otp_ttl_minutes=self.RESET_OTP_TTL_MINUTES,
            reset_token_ttl_minutes=self.RESET_TOKEN_TTL_MINUTES,
            cooldown_seconds=self.RESET_RESEND_COOLDOWN_SECONDS,
            max_attempts=self.RESET_MAX_VERIFY_ATTEMPTS,
            max_requests_per_email_per_hour=self.RESET_MAX_REQUESTS_PER_EMAIL_HOUR,
            max_requests_per_ip_per_hour=self.RESET_MAX_REQUESTS_PER_IP_HOUR,
            response_floor_ms=self.RESET_RESPONSE_FLOOR_MS,
            password_min_length=self.RESET_PASSWORD_MIN_LENGTH,
        )

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
