from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    PROJECT_NAME: str = "MedVerify"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"

    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "password"
    POSTGRES_DB: str = "medverify"
    DATABASE_URL: Optional[str] = None

    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 7 * 24 * 60

    # Token registry and shared rate-limit counters live here when set
    REDIS_URL: Optional[str] = None

    OTP_LENGTH: int = 6
    OTP_EXPIRE_SECONDS: int = 600
    OTP_RATE_LIMIT_MAX_REQUESTS: int = 3
    OTP_RATE_LIMIT_WINDOW_SECONDS: int = 60
    OTP_SWEEP_INTERVAL_SECONDS: int = 900
    RATE_LIMIT_BACKEND: str = "memory"  # memory, redis
    DEFAULT_COUNTRY_CODE: str = "91"

    BYPASS_PHONE_VERIFICATION: bool = False
    BYPASS_OTP_CODE: str = "123456"

    PAYMENT_CURRENCY: str = "INR"
    DEFAULT_PAYMENT_METHOD: str = "upi"
    PROVIDER_TIMEOUT_SECONDS: float = 10.0
    RAZORPAY_ENABLED: bool = False
    RAZORPAY_KEY_ID: Optional[str] = None
    RAZORPAY_KEY_SECRET: Optional[str] = None
    RAZORPAY_API_URL: str = "https://api.razorpay.com/v1"
    UPI_ENABLED: bool = True
    UPI_VIRTUAL_ADDRESS: Optional[str] = None
    UPI_MERCHANT_NAME: Optional[str] = None

    # None means detect from the live table at startup
    TRANSACTION_APPOINTMENT_LINK: Optional[bool] = None

    NOTIFIER_BACKEND: str = "console"  # console, live
    TWOFACTOR_API_KEY: Optional[str] = None
    TWOFACTOR_TEMPLATE: str = "AUTOGEN2"
    TWOFACTOR_API_URL: str = "https://2factor.in/API/V1"
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_STARTTLS: bool = True
    FROM_EMAIL: str = "noreply@medverify.local"
    FROM_NAME: str = "MedVerify Medical Services"

    class Config:
        case_sensitive = True
        env_file = ".env"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if not self.DATABASE_URL:
            self.DATABASE_URL = f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}/{self.POSTGRES_DB}"

settings = Settings()
