"""Application configuration using Pydantic settings."""

from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PHOTO_CONVERTER_",
        case_sensitive=False,
    )

    app_name: str = "Photo Converter"
    environment: str = "development"
    debug: bool = True

    api_v1_prefix: str = "/v1"
    cors_allowed_origins: List[str] = ["*"]

    database_url: str = "sqlite:///photo_converter.db"
    export_dir: Path = Path("./var/exports")

    encode_delay_seconds: float = 0.0
    encode_timeout_seconds: Optional[float] = None
    storefront_timeout_seconds: Optional[float] = None
    webp_policy: Literal["substitute", "reject"] = "substitute"
    archival_format: str = "JPEG"

    product_ids: List[str] = [
        "heic_converter_weekly",
        "heic_converter_monthly",
        "heic_converter_lifetime",
    ]
    transaction_signing_secret: str = "change-me"

    api_token: Optional[str] = None
    auth_token_header: str = "Authorization"


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


settings = get_settings()
