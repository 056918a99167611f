"""Core application modules."""

from streamhooks.core.config import Settings
from streamhooks.core.database import Base, Database

__all__ = [
    "Base",
    "Database",
    "Settings",
]
