from typing import Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):

    DATABASE_URL: str = "sqlite+aiosqlite:///./storefront.db"
    DB_ECHO: bool = False
    RESERVATION_TTL_MINUTES: int = 15
    REAPER_ENABLED: bool = True
    REAPER_INTERVAL_SECONDS: float = 60.0
    VAT_RATE: str = "0.24"
    CURRENCY: str = "EUR"
    PAYMENT_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_SIGNATURE_TOLERANCE_SECONDS: int = 300
    MONTONIO_SECRET_KEY: Optional[str] = None
    PAYSERA_SIGN_PASSWORD: Optional[str] = None

    class Config:
        env_file = ".env"
        extra="ignore"

config_settings = Settings()
