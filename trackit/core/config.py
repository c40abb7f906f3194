from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="TRACKIT_", env_file=".env", env_file_encoding="utf-8")

    # Database
    db_path: str = "/data/trackit.db"

    # Remote API
    api_base_url: str = "https://devtrackit.ballabotond.com"
    connect_timeout: float = 30.0
    read_timeout: float = 120.0
    write_timeout: float = 120.0
    upload_timeout: float = 300.0

    # Local photo storage for downloaded images
    photos_dir: str = "/data/photos"

    # Sync behaviour
    download_page_size: int = 1000
    download_server_data: bool = True
    connectivity_check_seconds: int = 60
    connectivity_timeout: float = 5.0

    # Optional settings
    log_level: str = "INFO"
    debug: bool = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
