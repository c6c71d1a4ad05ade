"""
Blocklift: Converts embedded content blocks into standalone records.

Finds every instance of a block type anywhere in a content repository,
creates one record per instance in a new model, and rewrites the fields
that embedded them into references.
"""

__version__ = "0.1.0"
__author__ = "Blocklift Project"

# Import main components
from .config import ConversionOptions, ReplacementPolicy
from .database import DatabaseManager
from .engine import BlockConverter
from .models import BlockAnalysis, ConversionProgress, ConversionResult, RenameResult
from .repository import ContentRepository, InMemoryRepository, HttpRepository

__all__ = [
    "ConversionOptions",
    "ReplacementPolicy",
    "DatabaseManager",
    "BlockConverter",
    "BlockAnalysis",
    "ConversionProgress",
    "ConversionResult",
    "RenameResult",
    "ContentRepository",
    "InMemoryRepository",
    "HttpRepository"
]
