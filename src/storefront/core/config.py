"""
Runtime settings for the storefront client.
Values come from the environment (or a .env file at the project root).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parents[3]
load_dotenv(dotenv_path=ROOT_DIR / ".env")

DEFAULT_BACKEND_URL = "http://localhost:8080"
DEFAULT_FRONTEND_URL = "http://localhost:8501"


def _get_env(*keys: str, default: str | None = None) -> str | None:
    for k in keys:
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v.strip()
    return default


def _get_float(*keys: str, default: float) -> float:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return float(v)


def normalize_base_url(url: str | None, default: str) -> str:
    """Add a protocol when missing and drop the trailing slash."""
    if not url:
        logger.warning(f"[CONFIG] Base URL not set, using default: {default}")
        url = default

    if not url.startswith("http://") and not url.startswith("https://"):
        url = f"http://{url}"
        logger.warning(f"[CONFIG] Base URL missing protocol, added http://: {url}")

    return url.rstrip("/")


@dataclass(frozen=True)
class Settings:
    backend_url: str
    frontend_url: str
    db_path: str
    request_timeout: float
    pending_max_age: timedelta
    currency: str
    session_token: str | None


def load_settings() -> Settings:
    return Settings(
        backend_url=normalize_base_url(
            _get_env("STOREFRONT_BACKEND_URL", "BACKEND_URL"), DEFAULT_BACKEND_URL
        ),
        frontend_url=normalize_base_url(
            _get_env("STOREFRONT_FRONTEND_URL", "FRONTEND_URL"), DEFAULT_FRONTEND_URL
        ),
        db_path=_get_env(
            "STOREFRONT_DB_PATH", default=str(ROOT_DIR / "data" / "storefront.db")
        ),
        request_timeout=_get_float("STOREFRONT_REQUEST_TIMEOUT", default=10.0),
        pending_max_age=timedelta(
            hours=_get_float("STOREFRONT_PENDING_MAX_AGE_HOURS", default=24.0)
        ),
        currency=_get_env("STOREFRONT_CURRENCY", default="Rs.") or "Rs.",
        session_token=_get_env("STOREFRONT_SESSION_TOKEN", "USER_TOKEN"),
    )


settings = load_settings()
