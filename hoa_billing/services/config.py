"""Process configuration loading.

Loads settings from .env file and environment variables with sensible defaults.
Validates values and provides clear error messages.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    """Process-wide settings for the billing server."""

    database_url: str = "sqlite:///./hoa_billing.db"
    """SQLAlchemy database URL (default: local SQLite)"""

    log_file: str = "logs/server.log"
    """Path to log file"""

    default_timezone: str = "America/Cancun"
    """Timezone used when a client configuration does not specify one"""

    locale: str = "es_MX"
    """Locale for amount and date formatting in audit notes"""

    credit_tolerance_centavos: int = 1
    """Allowed rounding drift when reconciling a payment distribution"""

    rebuild_balances_after_reversal: bool = True
    """Run the best-effort account balance rebuild after a reversal commits"""


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be a boolean (true/false), got {raw!r}")


def load_settings(env_file: str = ".env") -> Settings:
    """
    Load settings from .env file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (DATABASE_URL, LOG_FILE, DEFAULT_TIMEZONE, ...)
    2. .env file in project root
    3. Default values

    Returns:
        Settings with all values resolved

    Raises:
        ValueError: If a value is present but invalid
    """
    env_path = Path(env_file)
    if env_path.exists():
        load_dotenv(env_path)

    defaults = Settings()

    tolerance_raw = os.getenv("CREDIT_TOLERANCE_CENTAVOS", str(defaults.credit_tolerance_centavos))
    try:
        tolerance = int(tolerance_raw)
    except ValueError as e:
        raise ValueError(
            f"CREDIT_TOLERANCE_CENTAVOS must be an integer, got {tolerance_raw!r}"
        ) from e
    if tolerance < 0:
        raise ValueError("CREDIT_TOLERANCE_CENTAVOS cannot be negative")

    rebuild = _parse_bool(
        "REBUILD_BALANCES_AFTER_REVERSAL",
        os.getenv("REBUILD_BALANCES_AFTER_REVERSAL", "true"),
    )

    database_url = os.getenv("DATABASE_URL", defaults.database_url)
    if not database_url:
        raise ValueError("DATABASE_URL is empty. Set DATABASE_URL or remove it from .env")

    return Settings(
        database_url=database_url,
        log_file=os.getenv("LOG_FILE", defaults.log_file),
        default_timezone=os.getenv("DEFAULT_TIMEZONE", defaults.default_timezone),
        locale=os.getenv("LOCALE", defaults.locale),
        credit_tolerance_centavos=tolerance,
        rebuild_balances_after_reversal=rebuild,
    )


__all__ = ["Settings", "load_settings"]
