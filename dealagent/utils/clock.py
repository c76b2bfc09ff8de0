"""Naive-UTC time helpers shared by models and the session store."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time without tzinfo (SQLite DateTime columns drop it anyway)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
