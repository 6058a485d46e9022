# backend/settings.py
import logging
import os
from typing import Callable, Optional, TypeVar

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

logger = logging.getLogger("detective_settings")

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

T = TypeVar("T")


def _env_value(name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        logger.warning("Ignoring malformed %s=%r; using default %r", name, raw, default)
        return default


class ClassifierSettings(BaseModel):
    """Sampling and transport knobs for the evaluation classifier."""

    model: str = "gemini-2.0-flash"
    # Low temperature: verdicts should be consistent, not creative.
    temperature: float = 0.1
    max_tokens: int = 256
    timeout: float = 20.0
    max_retries: int = 1
    api_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ClassifierSettings":
        defaults = cls()
        return cls(
            model=os.getenv("DETECTIVE_EVAL_MODEL") or defaults.model,
            temperature=_env_value("DETECTIVE_EVAL_TEMPERATURE", defaults.temperature, float),
            max_tokens=_env_value("DETECTIVE_EVAL_MAX_TOKENS", defaults.max_tokens, int),
            timeout=_env_value("DETECTIVE_EVAL_TIMEOUT", defaults.timeout, float),
            max_retries=_env_value("DETECTIVE_EVAL_MAX_RETRIES", defaults.max_retries, int),
            api_key=os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY"),
        )


def configure_logging(level: Optional[str] = None) -> int:
    """Install the root handler. Called once by whatever hosts the service."""
    name = (level or os.getenv("DETECTIVE_LOG_LEVEL") or "INFO").strip().upper()
    numeric = logging.getLevelName(name)
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logging.basicConfig(level=numeric, format=LOG_FORMAT)
    logging.getLogger().setLevel(numeric)
    return numeric
