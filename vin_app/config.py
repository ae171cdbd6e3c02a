"""
Configuration for the VIN tracker backend.
Values come from environment variables or an optional .env file.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore")

    api_title: str = "VIN Tracker API"
    api_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./vin_records.db"

    # Google Cloud Vision
    google_vision_api_key: str | None = None
    vision_api_url: str = "https://vision.googleapis.com/v1/images:annotate"
    ocr_timeout: float = 30.0

    cors_origins: list[str] = ["*"]


settings = Settings()
