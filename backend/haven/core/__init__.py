"""
Haven - Core Package
====================

Core business logic, models, and schemas.
"""

from haven.core.config import settings
from haven.core.database import Base, get_db, get_session_factory

__all__ = ["Base", "get_db", "get_session_factory", "settings"]
