"""Configuration loader.

Reads environment variables and `.env` to configure the service.  These are
process-level settings; the runtime settings that clients can edit
(thresholds, keywords, crawl interval) live in `models.Settings` and are
persisted by `db`.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load variables from a .env file if present (project root).
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


# ---- Server ------------------------------------------------------------------

HOST: str = _get_env("HOST", "0.0.0.0")
PORT: int = _parse_int(_get_env("PORT"), 3000)

# Logging level: DEBUG, INFO, WARNING, ERROR.
LOG_LEVEL: str = _get_env("LOG_LEVEL", "INFO")

# Path to SQLite database holding the catalog and settings.
SQLITE_DB_PATH: str = _get_env("SQLITE_DB_PATH", "deal_alert.db")

# ---- Crawl source ------------------------------------------------------------

# Listing endpoint to poll.  Without it the scheduler idles and manual
# crawls report an error to the clients.
CRAWL_SOURCE_URL: Optional[str] = _get_env("CRAWL_SOURCE_URL")

# "json" (list of product records) or "html" (product tiles parsed with CSS selectors).
CRAWL_SOURCE_FORMAT: str = (_get_env("CRAWL_SOURCE_FORMAT", "json") or "json").strip().lower()

CRAWL_TIMEOUT_SECONDS: int = _parse_int(_get_env("CRAWL_TIMEOUT_SECONDS"), 20)

# CSS selectors for the html format.  The tile selector picks one element per
# product; the others are resolved inside each tile.
CRAWL_TILE_SELECTOR: str = _get_env("CRAWL_TILE_SELECTOR", "[data-product-id]")
CRAWL_TITLE_SELECTOR: str = _get_env("CRAWL_TITLE_SELECTOR", ".title, .name, h3, h2")
CRAWL_PRICE_SELECTOR: str = _get_env("CRAWL_PRICE_SELECTOR", ".price, .sale-price")
CRAWL_ORIGINAL_PRICE_SELECTOR: str = _get_env("CRAWL_ORIGINAL_PRICE_SELECTOR", ".original-price, del, s")
CRAWL_DISCOUNT_SELECTOR: str = _get_env("CRAWL_DISCOUNT_SELECTOR", ".discount, .rate")

# ---- Scheduling --------------------------------------------------------------

ENABLE_SCHEDULER: bool = _parse_bool(_get_env("ENABLE_SCHEDULER", "true"), True)

# Used until a persisted crawling_interval overrides it.
DEFAULT_CRAWL_INTERVAL_MINUTES: int = _parse_int(_get_env("DEFAULT_CRAWL_INTERVAL_MINUTES"), 5)

# Delay before the first scheduled crawl after startup.
INITIAL_CRAWL_DELAY_SECONDS: int = _parse_int(_get_env("INITIAL_CRAWL_DELAY_SECONDS"), 5)

# ---- Capacity & session lifecycle -------------------------------------------

CATALOG_CAPACITY: int = _parse_int(_get_env("CATALOG_CAPACITY"), 1000)
ALERT_LOG_CAPACITY: int = _parse_int(_get_env("ALERT_LOG_CAPACITY"), 100)

SESSION_IDLE_TIMEOUT_MINUTES: int = _parse_int(_get_env("SESSION_IDLE_TIMEOUT_MINUTES"), 60)
SWEEP_INTERVAL_MINUTES: int = _parse_int(_get_env("SWEEP_INTERVAL_MINUTES"), 60)

# ---- Validation --------------------------------------------------------------

def validate() -> None:
    """Validate configuration parameters."""
    if CRAWL_SOURCE_FORMAT not in ("json", "html"):
        raise RuntimeError(
            f"CRAWL_SOURCE_FORMAT must be 'json' or 'html', got {CRAWL_SOURCE_FORMAT!r}."
        )
    if CATALOG_CAPACITY <= 0 or ALERT_LOG_CAPACITY <= 0:
        raise RuntimeError("CATALOG_CAPACITY and ALERT_LOG_CAPACITY must be positive.")
    if SESSION_IDLE_TIMEOUT_MINUTES <= 0 or SWEEP_INTERVAL_MINUTES <= 0:
        raise RuntimeError(
            "SESSION_IDLE_TIMEOUT_MINUTES and SWEEP_INTERVAL_MINUTES must be positive."
        )


__all__ = [
    # Server
    "HOST",
    "PORT",
    "LOG_LEVEL",
    "SQLITE_DB_PATH",
    # Crawl source
    "CRAWL_SOURCE_URL",
    "CRAWL_SOURCE_FORMAT",
    "CRAWL_TIMEOUT_SECONDS",
    "CRAWL_TILE_SELECTOR",
    "CRAWL_TITLE_SELECTOR",
    "CRAWL_PRICE_SELECTOR",
    "CRAWL_ORIGINAL_PRICE_SELECTOR",
    "CRAWL_DISCOUNT_SELECTOR",
    # Scheduling
    "ENABLE_SCHEDULER",
    "DEFAULT_CRAWL_INTERVAL_MINUTES",
    "INITIAL_CRAWL_DELAY_SECONDS",
    # Capacity & sessions
    "CATALOG_CAPACITY",
    "ALERT_LOG_CAPACITY",
    "SESSION_IDLE_TIMEOUT_MINUTES",
    "SWEEP_INTERVAL_MINUTES",
    # Helpers
    "validate",
]
