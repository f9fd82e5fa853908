"""Durable store: models and the database adapter."""

from .database import STORE_ERRORS, Database
from .models import Base, utcnow

__all__ = ["Base", "Database", "STORE_ERRORS", "utcnow"]
