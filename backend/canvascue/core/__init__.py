"""Core infrastructure: configuration, database, logging, tracing, metrics, retry."""

from canvascue.core.config import settings, Settings
from canvascue.core.database import Base, Database, utcnow

__all__ = ["settings", "Settings", "Base", "Database", "utcnow"]
