"""
Result objects exposed to callers of the conversion pipeline.
"""

from typing import List, Optional
from pydantic import BaseModel, Field

from .schema import FieldDefinition, FieldUsage, NestedPath, TypeDefinition


class BlockAnalysis(BaseModel):
    """Structure and usage of an embeddable type, computed before any mutation."""

    source_type: TypeDefinition
    fields: List[FieldDefinition] = Field(default_factory=list)
    referencing_fields: List[FieldUsage] = Field(default_factory=list)
    nested_paths: List[NestedPath] = Field(default_factory=list)
    total_affected_records: int = Field(
        default=0,
        description="Distinct top-level records holding at least one instance"
    )

    @property
    def is_in_localized_context(self) -> bool:
        return any(path.is_in_localized_context for path in self.nested_paths)


class ConversionProgress(BaseModel):
    """A progress notification delivered to the caller's callback."""

    current_step: int
    total_steps: int
    description: str
    percentage: float
    details: Optional[str] = None


class ConversionResult(BaseModel):
    """Outcome of converting one embeddable type."""

    success: bool
    destination_type_id: Optional[str] = None
    destination_type_key: Optional[str] = None
    migrated_record_count: int = 0
    converted_field_count: int = 0
    error: Optional[str] = None
    original_block_name: Optional[str] = None
    original_block_api_key: Optional[str] = None


class RenameResult(BaseModel):
    """Outcome of giving the new type the original block's name and key."""

    success: bool
    new_name: Optional[str] = None
    new_api_key: Optional[str] = None
    error: Optional[str] = None
