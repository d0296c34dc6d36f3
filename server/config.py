"""Environment configuration for the admin API and custom API servers."""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()  # load environment variables from .env file

DEFAULT_DATA_DIR = Path(__file__).parent / "data"


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


@dataclass(frozen=True)
class Settings:
    """runtime settings shared by every custom API server."""

    # comma-separated values, or "*" for all (development only)
    cors_origins: tuple[str, ...] = ("*",)
    admin_host: str = "0.0.0.0"
    admin_port: int = 8000
    custom_api_host: str = "0.0.0.0"
    default_request_timeout: float = 30.0
    log_buffer_size: int = 1000
    flow_log_limit: int = 100
    port_grace_delay: float = 0.1
    sqlite_data_dir: Path = DEFAULT_DATA_DIR / "connections"
    log_level: str = "INFO"


def get_settings() -> Settings:
    """Build settings from environment variables."""
    return Settings(
        cors_origins=tuple(
            origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()
        ),
        admin_host=os.getenv("ADMIN_HOST", "0.0.0.0"),
        admin_port=_int_env("ADMIN_PORT", 8000),
        custom_api_host=os.getenv("CUSTOM_API_HOST", "0.0.0.0"),
        default_request_timeout=_float_env("DEFAULT_REQUEST_TIMEOUT", 30.0),
        log_buffer_size=_int_env("LOG_BUFFER_SIZE", 1000),
        flow_log_limit=_int_env("FLOW_LOG_LIMIT", 100),
        port_grace_delay=_float_env("PORT_GRACE_DELAY", 0.1),
        sqlite_data_dir=Path(
            os.getenv("SQLITE_DATA_DIR", str(DEFAULT_DATA_DIR / "connections"))
        ),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
