import os
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_TIMEZONE = "Asia/Baku"
DEFAULT_SERIES_THRESHOLD = 4


def load_environment() -> None:
    """
    Load environment variables by profile.
    - development (default): .env
    - production: .env.production
    """
    root_dir = Path(__file__).resolve().parents[1]
    environment = os.getenv("ENVIRONMENT", "development").strip().lower()
    env_filename = ".env.production" if environment == "production" else ".env"
    env_path = root_dir / env_filename

    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=False)
    else:
        load_dotenv(override=False)


def get_timezone_name() -> str:
    return os.getenv("APP_TIMEZONE", DEFAULT_TIMEZONE).strip() or DEFAULT_TIMEZONE


def get_series_threshold() -> int:
    """Minimum number of matching untracked bookings reported as a weekly series."""
    raw = os.getenv("SERIES_THRESHOLD")
    if raw is None or not raw.strip():
        return DEFAULT_SERIES_THRESHOLD
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"SERIES_THRESHOLD must be an integer, got {raw!r}")
    if value < 2:
        raise ValueError("SERIES_THRESHOLD must be at least 2")
    return value


def get_session_max_age() -> int:
    return int(os.getenv("SESSION_MAX_AGE", str(8 * 3600)))


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").strip().upper()
