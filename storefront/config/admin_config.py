from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENV: str = "dev"                # "dev" / "staging" / "prod"
    ENABLE_ADMIN: bool = True
    ADMIN_SECRET: Optional[str] = None
    SERVICE_NAME: str = "storefront"

    class Config:
        env_file = ".env"
        extra="ignore"

admin_config = Settings()
