"""Settings loaded from the environment and an optional .env file."""
import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from surge_tutor.db import DEFAULT_DB_PATH
from surge_tutor.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_LESSON_MODEL = "gpt-4o"
DEFAULT_MAX_DOCUMENT_BYTES = 5 * 1024 * 1024


@dataclass
class Settings:
    openai_api_key: str = ""
    model: str = DEFAULT_MODEL
    lesson_model: str = DEFAULT_LESSON_MODEL
    openai_base_url: Optional[str] = None
    db_path: str = DEFAULT_DB_PATH
    sync_url: str = ""
    sync_timeout: float = 10.0
    log_level: str = "WARNING"
    max_document_bytes: int = DEFAULT_MAX_DOCUMENT_BYTES

    def require_api_key(self) -> str:
        if not self.openai_api_key:
            raise ConfigError("Missing OPENAI_API_KEY")
        return self.openai_api_key


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Build Settings from the process environment.

    Values already present in the environment win over the .env file.
    """
    load_dotenv(env_file)
    settings = Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        model=os.getenv("OPENAI_MODEL") or DEFAULT_MODEL,
        lesson_model=os.getenv("OPENAI_LESSON_MODEL") or DEFAULT_LESSON_MODEL,
        openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
        db_path=os.path.expanduser(os.getenv("SURGE_DB_PATH") or DEFAULT_DB_PATH),
        sync_url=(os.getenv("SURGE_SYNC_URL") or "").rstrip("/"),
        sync_timeout=_env_number("SURGE_SYNC_TIMEOUT", 10.0, float),
        log_level=(os.getenv("SURGE_LOG_LEVEL") or "WARNING").upper(),
        max_document_bytes=_env_number("SURGE_MAX_DOCUMENT_BYTES", DEFAULT_MAX_DOCUMENT_BYTES, int),
    )
    logger.debug("Loaded settings: model=%s db=%s sync=%s", settings.model, settings.db_path, settings.sync_url or "off")
    return settings
