"""Persistence layer: engine, sessions and the declarative base."""

from refcredit.storage.db import Base, Database, db

__all__ = ["Base", "Database", "db"]
