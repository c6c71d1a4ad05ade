"""Data models for Blocklift."""

from .schema import (
    ContainerKind,
    TypeDefinition,
    FieldDefinition,
    FieldUsage,
    PathStep,
    NestedPath,
)
from .instances import BlockInstance, GroupedInstance, instance_key
from .results import BlockAnalysis, ConversionProgress, ConversionResult, RenameResult

__all__ = [
    "ContainerKind",
    "TypeDefinition",
    "FieldDefinition",
    "FieldUsage",
    "PathStep",
    "NestedPath",
    "BlockInstance",
    "GroupedInstance",
    "instance_key",
    "BlockAnalysis",
    "ConversionProgress",
    "ConversionResult",
    "RenameResult"
]
