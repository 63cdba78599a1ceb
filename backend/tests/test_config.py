"""
Tests for application configuration.
"""

import pytest


class TestSettings:
    """Test the Settings configuration class."""

    def test_settings_defaults(self):
        """Test that settings have sensible defaults."""
        from api.config import Settings

        defaults = Settings(_env_file=None)
        assert defaults.api_host == "0.0.0.0"
        assert defaults.api_port == 8000
        assert defaults.api_debug is False
        assert defaults.marketplace == "cloudtrucks"
        assert defaults.scraper_headless is True
        assert defaults.scraper_results_timeout == 20.0
        assert defaults.log_level == "INFO"

    def test_settings_database_url(self):
        """Test that database URL is set."""
        from api.config import settings

        assert settings.database_url is not None
        assert settings.database_url.startswith("sqlite") or "://" in settings.database_url

    def test_encryption_key_optional_at_startup(self, monkeypatch):
        """A missing ENCRYPTION_KEY must not prevent settings from loading."""
        from api.config import Settings

        monkeypatch.delenv("ENCRYPTION_KEY", raising=False)
        assert Settings(_env_file=None).encryption_key is None

    def test_encryption_key_from_env(self, monkeypatch):
        from api.config import Settings

        monkeypatch.setenv("ENCRYPTION_KEY", "from-env")
        assert Settings(_env_file=None).encryption_key == "from-env"

    def test_settings_cors_origins(self):
        """Test that CORS origins are configured."""
        from api.config import settings

        assert isinstance(settings.cors_origins, list)
        assert len(settings.cors_origins) > 0

    def test_settings_log_paths(self):
        """Test that log paths are valid."""
        from api.config import settings

        assert settings.log_dir is not None
        assert settings.log_file is not None
        assert settings.log_file.name == "backend.log"

    def test_sqlite_detection(self):
        from api.config import Settings

        assert Settings(_env_file=None).is_sqlite is True
        assert Settings(_env_file=None, database_url="postgresql://db/loadscout").is_sqlite is False


class TestMarketplaceConfig:
    """Test the marketplace registry."""

    def test_default_marketplace_registered(self):
        from scrapers.config import get_marketplace_config

        config = get_marketplace_config("cloudtrucks")
        assert config.session_cookie_name
        assert config.login_path == "/login"
        assert config.search_url.startswith(config.base_url)

    def test_unknown_marketplace(self):
        from scrapers.config import get_marketplace_config

        with pytest.raises(ValueError, match="Unknown marketplace"):
            get_marketplace_config("nope")

    def test_enabled_marketplaces(self):
        from scrapers.config import get_enabled_marketplaces

        assert "cloudtrucks" in get_enabled_marketplaces()
