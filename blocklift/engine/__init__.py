"""Conversion engine for Blocklift."""

from .converter import BlockConverter, list_block_types
from .document import RichDocumentTransformer
from .fields import FieldConversionEngine
from .builder import StandaloneTypeBuilder
from .locator import InstanceLocator, group_instances
from .mapper import MigrationMapper, MigrationMapping
from .resolver import SchemaCache, SchemaPathResolver

__all__ = [
    "BlockConverter",
    "list_block_types",
    "RichDocumentTransformer",
    "FieldConversionEngine",
    "StandaloneTypeBuilder",
    "InstanceLocator",
    "group_instances",
    "MigrationMapper",
    "MigrationMapping",
    "SchemaCache",
    "SchemaPathResolver"
]
