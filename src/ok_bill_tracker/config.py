"""Centralized configuration for the Oklahoma bill tracker sync.

All settings live here so they can be overridden by environment variables or a
``.env`` file without touching source code.

**Profile system:** Set ``OK_PROFILE=dev`` (default) or ``OK_PROFILE=prod``
to get sensible defaults for each environment.  Any individual variable
still overrides the profile value.

Usage::

    from ok_bill_tracker.config import DATABASE_URL, JURISDICTION
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from current working directory (project root when run from cron)
load_dotenv()

LOGGER = logging.getLogger(__name__)

# ── Profile: one knob for the whole environment ──────────────────────────────
# "dev" = local SQLite file, "prod" = Postgres, must be configured explicitly.

PROFILE: str = os.getenv("OK_PROFILE", "dev").lower().strip()

_PROFILE_DEFAULTS: dict[str, dict[str, str]] = {
    "dev": {
        "DATABASE_URL": "sqlite:///ok_bills.db",
        "OK_PAGE_DELAY": "0.2",
    },
    "prod": {
        "DATABASE_URL": "",  # empty → must be explicitly set
        "OK_PAGE_DELAY": "0.2",
    },
}

if PROFILE not in _PROFILE_DEFAULTS:
    LOGGER.warning("Unknown OK_PROFILE=%r, falling back to 'dev'.", PROFILE)
    PROFILE = "dev"

_defaults = _PROFILE_DEFAULTS[PROFILE]


def _env(key: str, fallback: str = "") -> str:
    """Read an env var, falling back to profile default then *fallback*."""
    return os.getenv(key, _defaults.get(key, fallback))


# ── Open States API ──────────────────────────────────────────────────────────
OPENSTATES_BASE_URL: str = _env("OPENSTATES_BASE_URL", "https://v3.openstates.org").rstrip("/")
OPENSTATES_API_KEY: str = _env("OPENSTATES_API_KEY").strip()
JURISDICTION: str = _env("OK_JURISDICTION", "ok").strip() or "ok"
# Empty → all sessions the API returns for the jurisdiction.
SESSION: str = _env("OK_SESSION").strip()
# Fallback session identifier stored when a bill record carries none.
DEFAULT_SESSION: str = _env("OK_DEFAULT_SESSION", "2026").strip() or "2026"

# ── Pagination / rate limiting ───────────────────────────────────────────────
PER_PAGE: int = int(_env("OK_PER_PAGE", "20"))
LEGISLATOR_PAGE_CAP: int = int(_env("OK_LEGISLATOR_PAGE_CAP", "10"))
BILL_PAGE_CAP: int = int(_env("OK_BILL_PAGE_CAP", "20"))
PAGE_DELAY: float = float(_env("OK_PAGE_DELAY", "0.2"))
REQUEST_TIMEOUT: int = int(_env("OK_REQUEST_TIMEOUT", "30"))

# ── Storage ──────────────────────────────────────────────────────────────────
DATABASE_URL: str = _env("DATABASE_URL").strip()

# ── Run ledger ───────────────────────────────────────────────────────────────
RUN_LOG_PATH: Path = Path(_env("OK_RUN_LOG", ".sync_runs.jsonl"))

# ── Production guard: warn if credentials are missing ────────────────────────
if PROFILE == "prod":
    if not DATABASE_URL:
        LOGGER.warning("OK_PROFILE=prod but DATABASE_URL is empty. The sync cannot run.")
    if not OPENSTATES_API_KEY:
        LOGGER.warning(
            "OK_PROFILE=prod but OPENSTATES_API_KEY is empty. Open States will reject requests."
        )
