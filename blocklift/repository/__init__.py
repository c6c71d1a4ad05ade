"""Content repository adapters."""

from .base import ContentRepository
from .memory import InMemoryRepository
from .http import HttpRepository

__all__ = ["ContentRepository", "InMemoryRepository", "HttpRepository"]
