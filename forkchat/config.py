"""Runtime configuration from environment variables (and a .env file).

Settings are read at call time, so editing the environment (or the .env file
before the next load) takes effect without restarting anything.
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000
DEFAULT_DB_PATH = "forkchat.db"


class Settings(BaseModel):
    openai_api_key: str | None = None
    openai_model: str = DEFAULT_MODEL
    openai_temperature: float = DEFAULT_TEMPERATURE
    openai_max_tokens: int = DEFAULT_MAX_TOKENS
    openai_base_url: str | None = None
    database_path: str = DEFAULT_DB_PATH


def load_env_file(path: Path | str | None = None) -> None:
    """Load a .env file into os.environ without overriding what is already set."""
    load_dotenv(path or Path.cwd() / ".env")


def load_settings() -> Settings:
    env = os.environ
    return Settings(
        openai_api_key=env.get("OPENAI_API_KEY") or None,
        openai_model=env.get("OPENAI_MODEL") or DEFAULT_MODEL,
        openai_temperature=_parse_number(
            env.get("OPENAI_TEMPERATURE"), float, DEFAULT_TEMPERATURE
        ),
        openai_max_tokens=_parse_number(env.get("OPENAI_MAX_TOKENS"), int, DEFAULT_MAX_TOKENS),
        openai_base_url=env.get("OPENAI_BASE_URL") or None,
        database_path=env.get("FORKCHAT_DB_PATH") or DEFAULT_DB_PATH,
    )


def _parse_number(raw: str | None, kind: type, default: float | int) -> float | int:
    if raw is None or raw == "":
        return default
    try:
        value = kind(raw)
    except ValueError:
        logger.warning("Ignoring unparsable setting %r, using %r", raw, default)
        return default
    return value
