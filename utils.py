"""Utility / helper functions used across the application."""

from __future__ import annotations

import datetime
from datetime import timezone


def utc_now() -> datetime.datetime:
    """Return current UTC datetime.  Used as SQLAlchemy column default."""
    return datetime.datetime.now(timezone.utc)
