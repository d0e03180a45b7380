"""Process configuration, read from the environment (and a local .env file)."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Evaluator cadences (seconds)
TICK_SECONDS = 1
IDLE_CHECK_SECONDS = 30
REMINDER_CHECK_SECONDS = 60

DEFAULT_PORT = 7788


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path.home() / ".punchclock" / "punchclock.db")
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    seed_defaults: bool = True
    schedule_jobs: bool = True
    desktop_notifications: bool = True

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @classmethod
    def from_env(cls) -> "Config":
        load_dotenv()
        config = cls()
        if os.environ.get("PUNCHCLOCK_DB"):
            config.db_path = Path(os.path.expanduser(os.environ["PUNCHCLOCK_DB"]))
        config.host = os.environ.get("PUNCHCLOCK_HOST", config.host)
        config.port = int(os.environ.get("PUNCHCLOCK_PORT", config.port))
        config.log_level = os.environ.get("PUNCHCLOCK_LOG_LEVEL", config.log_level).upper()
        config.seed_defaults = _flag(os.environ.get("PUNCHCLOCK_SEED", "true"))
        config.desktop_notifications = _flag(os.environ.get("PUNCHCLOCK_NOTIFY", "true"))
        return config


def api_url() -> str:
    """Base URL used by the terminal client."""
    load_dotenv()
    return os.environ.get("PUNCHCLOCK_URL", f"http://127.0.0.1:{os.environ.get('PUNCHCLOCK_PORT', DEFAULT_PORT)}")
