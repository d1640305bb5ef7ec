"""Unit tests for settings loading.

Tests defaults, environment overrides, .env files and error handling.
"""

import os

import pytest

from hoa_billing.services.config import Settings, load_settings

ENV_VARS = (
    "DATABASE_URL",
    "LOG_FILE",
    "DEFAULT_TIMEZONE",
    "LOCALE",
    "CREDIT_TOLERANCE_CENTAVOS",
    "REBUILD_BALANCES_AFTER_REVERSAL",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every setting from the environment."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLoadSettings:
    """Tests for load_settings function."""

    def test_defaults(self, clean_env, tmp_path):
        """Test that defaults apply when nothing is configured."""
        settings = load_settings(str(tmp_path / "missing.env"))

        assert settings == Settings()
        assert settings.credit_tolerance_centavos == 1
        assert settings.default_timezone == "America/Cancun"
        assert settings.rebuild_balances_after_reversal is True

    def test_environment_overrides(self, clean_env, tmp_path):
        """Test that environment variables override defaults."""
        clean_env.setenv("DATABASE_URL", "postgresql://billing@db/billing")
        clean_env.setenv("CREDIT_TOLERANCE_CENTAVOS", "2")
        clean_env.setenv("LOCALE", "en_US")
        clean_env.setenv("REBUILD_BALANCES_AFTER_REVERSAL", "off")

        settings = load_settings(str(tmp_path / "missing.env"))

        assert settings.database_url == "postgresql://billing@db/billing"
        assert settings.credit_tolerance_centavos == 2
        assert settings.locale == "en_US"
        assert settings.rebuild_balances_after_reversal is False

    def test_env_file_is_loaded(self, clean_env, tmp_path):
        """Test that values are read from a .env file."""
        env_file = tmp_path / ".env"
        env_file.write_text("DEFAULT_TIMEZONE=America/Mexico_City\nLOG_FILE=/tmp/billing.log\n")

        try:
            settings = load_settings(str(env_file))
        finally:
            # load_dotenv writes straight into os.environ
            os.environ.pop("DEFAULT_TIMEZONE", None)
            os.environ.pop("LOG_FILE", None)

        assert settings.default_timezone == "America/Mexico_City"
        assert settings.log_file == "/tmp/billing.log"

    def test_invalid_tolerance(self, clean_env, tmp_path):
        """Test that a non-integer tolerance raises ValueError with clear message."""
        clean_env.setenv("CREDIT_TOLERANCE_CENTAVOS", "half")

        with pytest.raises(ValueError, match="CREDIT_TOLERANCE_CENTAVOS must be an integer"):
            load_settings(str(tmp_path / "missing.env"))

    def test_negative_tolerance(self, clean_env, tmp_path):
        """Test that a negative tolerance is rejected."""
        clean_env.setenv("CREDIT_TOLERANCE_CENTAVOS", "-1")

        with pytest.raises(ValueError, match="cannot be negative"):
            load_settings(str(tmp_path / "missing.env"))

    def test_invalid_boolean(self, clean_env, tmp_path):
        """Test that an unknown boolean value is rejected."""
        clean_env.setenv("REBUILD_BALANCES_AFTER_REVERSAL", "sometimes")

        with pytest.raises(ValueError, match="REBUILD_BALANCES_AFTER_REVERSAL must be a boolean"):
            load_settings(str(tmp_path / "missing.env"))

    def test_empty_database_url(self, clean_env, tmp_path):
        """Test that an empty DATABASE_URL is rejected."""
        clean_env.setenv("DATABASE_URL", "")

        with pytest.raises(ValueError, match="DATABASE_URL is empty"):
            load_settings(str(tmp_path / "missing.env"))
