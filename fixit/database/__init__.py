"""Engines, sessions and ORM models for FixIt."""

from fixit.database.config import AsyncSessionLocal, Base, SyncSessionLocal, engine, get_db
from fixit.database import models

__all__ = ["AsyncSessionLocal", "Base", "SyncSessionLocal", "engine", "get_db", "models"]
