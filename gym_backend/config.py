from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# SQLite file in the project root by default
DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "gym_reservations.sqlite"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    database_url: str
    sql_echo: bool = False
    log_level: str = "INFO"


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("GYM_DATABASE_URL", f"sqlite:///{DEFAULT_DB_PATH}"),
        sql_echo=_env_flag("GYM_SQL_ECHO"),
        log_level=os.getenv("GYM_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(level=level or load_settings().log_level, format=LOG_FORMAT)
