"""Runtime settings and logging setup."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import structlog
from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    db_path: Path
    gemini_api_key: str
    vision_model: str
    text_model: str
    metadata_language: str
    log_level: str
    port: int
    env: str

    @property
    def is_dev(self) -> bool:
        return self.env == "dev"

    @classmethod
    def from_env(cls) -> Settings:
        """Read settings from the environment, after loading any ``.env`` file."""
        load_dotenv()
        return cls(
            db_path=Path(os.environ.get("LIBRARY_DB", ".data/library.db")),
            gemini_api_key=os.environ.get("GEMINI_API_KEY", ""),
            vision_model=os.environ.get("GEMINI_VISION_MODEL", "gemini-2.5-flash"),
            text_model=os.environ.get("GEMINI_TEXT_MODEL", "gemini-2.5-flash"),
            metadata_language=os.environ.get("METADATA_LANGUAGE", "English"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            port=int(os.environ.get("PORT", "8000")),
            env=os.environ.get("ENV", "dev"),
        )


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through a level filter; quiet httpx request logs."""
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level, logging.INFO)),
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
