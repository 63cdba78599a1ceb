"""
Application Configuration
Loads settings from environment variables (and .env when present).
"""

from pydantic_settings import BaseSettings
from typing import List, Optional
from pathlib import Path


class Settings(BaseSettings):
    """LoadScout settings. Every field maps to an upper-case env var."""

    # Persistence
    database_url: str = "sqlite:///./data/loadscout.db"
    db_pool_size: int = 5          # ignored for sqlite
    db_max_overflow: int = 10
    db_pool_recycle: int = 3600    # seconds

    # HTTP server
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = False
    cors_origins: List[str] = ["*"]

    # Credential encryption secret (ENCRYPTION_KEY). Optional at startup,
    # required the first time credentials are encrypted or decrypted.
    encryption_key: Optional[str] = None

    # Marketplace scraping
    marketplace: str = "cloudtrucks"
    scraper_headless: bool = True
    scraper_navigation_timeout: float = 60.0  # page.goto
    scraper_element_timeout: float = 5.0      # best-effort form waits
    scraper_results_timeout: float = 20.0     # results container
    scraper_settle_seconds: float = 3.0       # jobs page hydration

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @property
    def log_dir(self) -> Path:
        """<repo>/logs, next to backend/."""
        return Path(__file__).parent.parent.parent / "logs"

    @property
    def log_file(self) -> Path:
        return self.log_dir / "backend.log"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    class Config:
        # Only load .env if it exists to avoid permission errors
        env_file = ".env" if Path(".env").exists() else None
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()
