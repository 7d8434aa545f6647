import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
APP_LOGGER_NAME = "shis"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite://"
    storage_prefix: str = "shis_"
    seed_on_empty: bool = True
    seed: int = 42
    checkup_window_months: int = 6
    log_level: str = "INFO"
    environment: str = "production"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("SHIS_DATABASE_URL", "sqlite://"),
            storage_prefix=os.getenv("SHIS_STORAGE_PREFIX", "shis_"),
            seed_on_empty=_env_bool("SHIS_SEED_ON_EMPTY", True),
            seed=int(os.getenv("SHIS_SEED", "42")),
            checkup_window_months=int(os.getenv("SHIS_CHECKUP_WINDOW_MONTHS", "6")),
            log_level=os.getenv("SHIS_LOG_LEVEL", "INFO").upper(),
            environment=os.getenv("ENVIRONMENT", "production"),
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure the application logger once and return it."""
    resolved = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=resolved, format=LOG_FORMAT)

    logger = logging.getLogger(APP_LOGGER_NAME)
    logger.setLevel(resolved)

    # Avoid duplicate handlers when called again (tests, reloads)
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    base = logging.getLogger(APP_LOGGER_NAME)
    return base.getChild(name) if name else base
