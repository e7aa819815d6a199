# livetrack/config.py
import os
from dataclasses import dataclass
from pathlib import Path

from .broadcast import DEFAULT_QUEUE_SIZE
from .history import DEFAULT_LIMIT

BASE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = BASE_DIR / "templates"


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 5000
    log_level: str = "INFO"
    history_limit: int = DEFAULT_LIMIT
    queue_size: int = DEFAULT_QUEUE_SIZE


def load_settings() -> Settings:
    """Read settings from the environment."""
    return Settings(
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", 5000)),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        history_limit=int(os.environ.get("HISTORY_LIMIT", DEFAULT_LIMIT)),
        queue_size=int(os.environ.get("SUBSCRIBER_QUEUE_SIZE", DEFAULT_QUEUE_SIZE)),
    )
