# =============================================================================
# lifeos_core/config/settings.py
# Runtime configuration: secrets.toml, .env and environment variables
# =============================================================================
"""
Settings loader.

Resolution order for every value (first hit wins):
    1. .streamlit/secrets.toml  ([supabase] url / key, [lifeos] ...)
    2. environment variables (after loading .env with python-dotenv)
    3. dataclass defaults

Expected secrets.toml format:
    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"

    [lifeos]
    db_path = "local_data/lifeos.db"
    sync_interval = 30
"""

from __future__ import annotations
import os
import tomllib
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional
import logging

from dotenv import load_dotenv

from lifeos_core.errors import ConfigurationError

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent.parent
DEFAULT_SECRETS_PATH = PROJECT_ROOT / ".streamlit" / "secrets.toml"
DEFAULT_DB_PATH = PROJECT_ROOT / "local_data" / "lifeos.db"

# env var -> (settings field, converter)
ENV_OVERRIDES = {
    "SUPABASE_URL": ("supabase_url", str),
    "SUPABASE_KEY": ("supabase_key", str),
    "LIFEOS_DB_PATH": ("db_path", Path),
    "LIFEOS_SYNC_INTERVAL": ("sync_interval", float),
    "LIFEOS_REQUEST_TIMEOUT": ("request_timeout", float),
    "LIFEOS_MAX_RETRY_ATTEMPTS": ("max_retry_attempts", int),
    "LIFEOS_MAX_CACHED_RECORDS": ("max_cached_records", int),
}


@dataclass(frozen=True)
class Settings:
    """Immutable runtime configuration for the sync engine."""
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    db_path: Path = DEFAULT_DB_PATH
    sync_interval: float = 30.0         # Seconds between background drains
    request_timeout: float = 10.0       # Per remote call
    max_retry_attempts: int = 5         # Before an entry is dead-lettered
    backoff_base: float = 2.0
    max_backoff: float = 600.0
    max_cached_records: int = 5000      # Per cache key
    probe_timeout: float = 5.0

    @property
    def has_remote(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    def require_remote(self) -> None:
        """Raise ConfigurationError if Supabase credentials are missing."""
        if not self.supabase_url:
            raise ConfigurationError("Supabase URL is not configured", config_key="SUPABASE_URL")
        if not self.supabase_key:
            raise ConfigurationError("Supabase key is not configured", config_key="SUPABASE_KEY")


def _load_secrets_toml(path: Path) -> Dict[str, Any]:
    """Read secrets.toml into a flat dict of Settings fields."""
    if not path.exists():
        return {}

    try:
        with open(path, "rb") as f:
            secrets = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(f"Cannot read {path}: {e}", config_key=str(path))

    values: Dict[str, Any] = {}
    supabase = secrets.get("supabase", {})
    if supabase.get("url"):
        values["supabase_url"] = supabase["url"]
    if supabase.get("key"):
        values["supabase_key"] = supabase["key"]

    for key, value in secrets.get("lifeos", {}).items():
        if key in Settings.__dataclass_fields__:
            values[key] = Path(value) if key == "db_path" else value
        else:
            logger.warning(f"Ignoring unknown [lifeos] setting: {key}")

    return values


def _load_environment() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for env_name, (field_name, convert) in ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is None or raw == "":
            continue
        try:
            values[field_name] = convert(raw)
        except ValueError:
            raise ConfigurationError(
                f"Invalid value for {env_name}: {raw!r}",
                config_key=env_name,
            )
    return values


def load_settings(
    secrets_path: Optional[Path] = None,
    env_file: Optional[Path] = None,
    **overrides: Any,
) -> Settings:
    """
    Build Settings from secrets.toml, .env and the environment.

    Args:
        secrets_path: Path to secrets.toml (default: .streamlit/secrets.toml)
        env_file: Path to a .env file (default: python-dotenv lookup)
        **overrides: Explicit field values, applied last

    Returns:
        Settings instance
    """
    load_dotenv(dotenv_path=env_file, override=False)

    values = _load_environment()
    # secrets.toml wins over the environment, matching the setup scripts
    values.update(_load_secrets_toml(secrets_path or DEFAULT_SECRETS_PATH))
    values.update(overrides)

    settings = replace(Settings(), **values)
    logger.debug(
        f"Settings loaded (remote configured: {settings.has_remote}, db: {settings.db_path})"
    )
    return settings
