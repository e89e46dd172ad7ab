"""Database layer for chunkhub."""

from chunkhub.db.connection import Database
from chunkhub.db.migrations import run_migrations

__all__ = ["Database", "run_migrations"]
