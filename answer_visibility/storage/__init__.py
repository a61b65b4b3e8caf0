"""SQLite persistence for Answer Visibility."""

from .db import CURRENT_SCHEMA_VERSION, init_db_if_needed
from .repository import Repository

__all__ = ["CURRENT_SCHEMA_VERSION", "Repository", "init_db_if_needed"]
