from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

APP_DIR = Path.home() / ".digital_library"
DEFAULT_DB_PATH = APP_DIR / "library.db"

MAX_REQUEST_TIMEOUT = 30.0
PAPER_PROVIDERS = ("scholar", "semantic_scholar")

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


@dataclass(frozen=True)
class Settings:
    """Runtime configuration resolved from the environment."""

    google_books_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    db_path: Path = DEFAULT_DB_PATH
    paper_provider: str = "scholar"
    request_timeout: float = MAX_REQUEST_TIMEOUT
    search_debounce: float = 0.3
    log_level: str = "INFO"
    cors_origins: List[str] = field(
        default_factory=lambda: ["http://localhost:5173", "http://127.0.0.1:5173"]
    )

    @property
    def supabase_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger(__name__).warning("Ignoring non-numeric %s=%r", name, raw)
        return default


def load_settings() -> Settings:
    load_dotenv()

    provider = (os.getenv("PAPER_PROVIDER") or "scholar").strip().lower()
    if provider not in PAPER_PROVIDERS:
        provider = "scholar"

    timeout = min(_float_env("REQUEST_TIMEOUT", MAX_REQUEST_TIMEOUT), MAX_REQUEST_TIMEOUT)

    origins_raw = os.getenv("CORS_ORIGINS")
    origins = (
        [origin.strip() for origin in origins_raw.split(",") if origin.strip()]
        if origins_raw
        else ["http://localhost:5173", "http://127.0.0.1:5173"]
    )

    return Settings(
        google_books_api_key=os.getenv("GOOGLE_BOOKS_API_KEY") or None,
        gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
        gemini_model=os.getenv("GEMINI_MODEL") or "gemini-2.0-flash",
        supabase_url=os.getenv("SUPABASE_URL") or None,
        supabase_key=os.getenv("SUPABASE_KEY") or None,
        db_path=Path(os.getenv("LIBRARY_DB_PATH") or DEFAULT_DB_PATH),
        paper_provider=provider,
        request_timeout=timeout,
        search_debounce=_float_env("SEARCH_DEBOUNCE", 0.3),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        cors_origins=origins,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or get_settings().log_level).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
