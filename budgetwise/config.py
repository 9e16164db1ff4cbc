"""Configuration management for the BudgetWise ledger.

This module centralizes paths, logging defaults and environment variable
overrides.  Domain constants (schema version, buckets, default settings)
live in :mod:`budgetwise.models`.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Union

# Base project root - assumes this file is in budgetwise/
_PROJECT_ROOT = Path(__file__).parent.parent.resolve()

# Data directory
DATA_DIR = Path(os.getenv("BUDGETWISE_DATA_DIR", _PROJECT_ROOT / "data"))
EXPORTS_DIR = DATA_DIR / "exports"

# Key-value database holding the four persisted collections
DB_PATH = Path(
    os.getenv("BUDGETWISE_DB_PATH", DATA_DIR / "budgetwise.db")
).resolve()

LOG_LEVEL = os.getenv("BUDGETWISE_LOG_LEVEL", "WARNING")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def ensure_data_directories() -> None:
    """Create all required data directories if they don't exist."""
    for directory in [DATA_DIR, EXPORTS_DIR, DB_PATH.parent]:
        directory.mkdir(parents=True, exist_ok=True)


def get_db_path() -> str:
    """Get the database path as a string."""
    return str(DB_PATH)


def configure_logging(level: Optional[Union[int, str]] = None) -> None:
    """Configure root logging for command-line entry points.

    The library modules only create loggers; handlers are installed here so
    embedding applications keep control over their own logging setup.
    """
    resolved = level if level is not None else LOG_LEVEL
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.upper())
        if not isinstance(resolved, int):
            resolved = logging.WARNING
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
