"""DuckDB-backed conversion state."""

from .manager import DatabaseManager

__all__ = ["DatabaseManager"]
