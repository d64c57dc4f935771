from functools import lru_cache
import logging

from pydantic_settings import BaseSettings, SettingsConfigDict

from farm_auth.core.logger import setup_logger


class Settings(BaseSettings):
    # Application settings
    ENVIRONMENT: str = "development"  # Options: development, test, production
    APP_NAME: str = "FarmAuth"
    APP_VERSION: str = "1.0.0"
    APP_DESCRIPTION: str = """
    Phone and email OTP authentication for the farm management backend.
    """
    DEBUG: bool = True
    LOG_DIR: str = "logs"

    # CORS settings
    CORS_ALLOW_ORIGINS: list[str] = ["http://localhost:3000"]
    CORS_ALLOW_CREDENTIALS: bool = True

    # Cache settings
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_ENABLED: bool = True
    REDIS_CONNECT_RETRIES: int = 3
    REDIS_RETRY_DELAY_SECONDS: float = 1.0
    REDIS_CONNECT_TIMEOUT: float = 5.0
    CACHE_OPERATION_TIMEOUT: float = 0.5

    # OTP settings
    OTP_LENGTH: int = 6
    OTP_EXPIRY: int = 600
    PHONE_OTP_EXPIRY: int = 300
    OTP_ATTEMPTS_LIMIT: int = 3
    OTP_RESEND_DELAY: int = 30
    PHONE_OTP_RESEND_DELAY: int = 60
    OTP_VERIFIED_TTL: int = 120
    OTP_HASH_SECRET: str = "change-me-otp-hash-secret-0123456789abcdef"
    DEFAULT_COUNTRY_CODE: str = "+91"
    TEST_PHONE_NUMBERS: str = ""

    # JWT settings
    JWT_ACCESS_SECRET: str = "change-me-access-secret-0123456789abcdef"
    JWT_REFRESH_SECRET: str = "change-me-refresh-secret-0123456789abcdef"
    JWT_VERIFICATION_SECRET: str = "change-me-verification-secret-0123456789"
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "farm-auth"
    JWT_AUDIENCE: str = "http://localhost:3000"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    VERIFICATION_TOKEN_EXPIRE_MINUTES: int = 10
    DEFAULT_ROLE: str = "farmer"

    model_config: SettingsConfigDict = SettingsConfigDict(  # type: ignore
        env_file=".env",
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def test_phone_numbers(self) -> list[str]:
        """Allowlisted phone numbers as digit strings (no leading '+')."""
        return [
            "".join(ch for ch in phone if ch.isdigit())
            for phone in self.TEST_PHONE_NUMBERS.split(",")
            if phone.strip()
        ]


@lru_cache()
def get_settings() -> Settings:
    return Settings()  # type: ignore


settings = get_settings()

# Configure loggers
app_logger = setup_logger(
    name="app_logger", log_file="app.log", log_dir=settings.LOG_DIR
)
request_logger = setup_logger(
    name="request_logger", log_file="requests.log", log_dir=settings.LOG_DIR
)
cache_logger = setup_logger(
    name="cache_logger", log_file="cache.log", log_dir=settings.LOG_DIR
)
otp_logger = setup_logger(
    name="otp_logger", log_file="otp.log", log_dir=settings.LOG_DIR
)
token_logger = setup_logger(
    name="token_logger", log_file="token.log", log_dir=settings.LOG_DIR
)
auth_logger = setup_logger(
    name="auth_logger", log_file="auth.log", log_dir=settings.LOG_DIR
)
utils_logger = setup_logger(
    name="utils_logger",
    log_file="utils.log",
    level=logging.INFO,
    log_dir=settings.LOG_DIR,
)

__all__ = [
    "Settings",
    "get_settings",
    "settings",
    "app_logger",
    "request_logger",
    "cache_logger",
    "otp_logger",
    "token_logger",
    "auth_logger",
    "utils_logger",
]
