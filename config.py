"""
Configuration settings for the PDF overlay editor backend.

Values come from the environment (or a local .env file).
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from the environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Frontend origin for CORS (Vercel deployment or local dev server)
    frontend_url: str = Field(default="http://localhost:3000", alias="FRONTEND_URL")

    # Relational store for pdf_edits; empty means in-memory repository
    database_url: Optional[str] = Field(default=None, alias="DATABASE_URL")

    # File bucket for PDF and image binaries
    blob_root: str = Field(default="./storage", alias="BLOB_ROOT")
    max_upload_bytes: int = Field(
        default=52428800,
        alias="MAX_UPLOAD_BYTES",
        description="Bucket file size limit (50 MiB)",
    )
    fetch_timeout: float = Field(default=15.0, alias="FETCH_TIMEOUT")

    # Editing surface
    default_scale: float = Field(default=1.5, alias="DEFAULT_SCALE", gt=0)
    mask_padding: float = Field(default=0.0, alias="MASK_PADDING", ge=0)

    # Export leniency: skip edits on missing pages unless strict
    export_strict_pages: bool = Field(default=False, alias="EXPORT_STRICT_PAGES")

    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
