"""
Schema data models for Blocklift.

Types, fields, and the field hops (PathStep/NestedPath) that lead from a
top-level type down to an embeddable block type.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field


class ContainerKind(str, Enum):
    """Field kinds able to hold embedded block instances."""
    RICH_TEXT = "rich_text"
    STRUCTURED_TEXT = "structured_text"
    SINGLE_BLOCK = "single_block"

    @property
    def validator_key(self) -> str:
        """Name of the validator listing the allowed block types."""
        return _BLOCK_VALIDATORS[self]


_BLOCK_VALIDATORS = {
    ContainerKind.RICH_TEXT: "rich_text_blocks",
    ContainerKind.STRUCTURED_TEXT: "structured_text_blocks",
    ContainerKind.SINGLE_BLOCK: "single_block_blocks",
}

STRUCTURED_TEXT_LINKS_VALIDATOR = "structured_text_links"
LINKS_VALIDATOR = "items_item_type"
LINK_VALIDATOR = "item_item_type"


class TypeDefinition(BaseModel):
    """A content type (a top-level model, or an embeddable block when modular_block is set)."""

    id: str = Field(..., description="Repository identifier of the type")
    name: str = Field(..., description="Human-readable display name")
    api_key: str = Field(..., description="Machine key of the type")
    modular_block: bool = Field(
        default=False,
        description="True for embeddable types whose instances only live inside other records"
    )
    title_field_id: Optional[str] = Field(
        default=None,
        description="Field used as the record title in the editor"
    )


class FieldDefinition(BaseModel):
    """A field belonging to exactly one TypeDefinition."""

    id: str
    label: str
    api_key: str
    field_type: str = Field(..., description="Repository field type, e.g. string, rich_text, links")
    item_type_id: Optional[str] = Field(default=None, description="Owning type id")
    localized: bool = False
    validators: Dict[str, Any] = Field(default_factory=dict)
    appearance: Dict[str, Any] = Field(default_factory=dict)
    position: int = 0
    hint: Optional[str] = None
    default_value: Any = None
    fieldset: Optional[str] = None

    @property
    def container_kind(self) -> Optional[ContainerKind]:
        """The container kind of this field, or None for plain fields."""
        try:
            return ContainerKind(self.field_type)
        except ValueError:
            return None

    def allowed_block_ids(self) -> List[str]:
        """Block type ids this container field accepts (empty for plain fields)."""
        kind = self.container_kind
        if kind is None:
            return []
        validator = self.validators.get(kind.validator_key) or {}
        return list(validator.get("item_types") or [])

    def allowed_link_ids(self) -> List[str]:
        """Record type ids accepted by a link, links or structured text field."""
        for key in (LINKS_VALIDATOR, LINK_VALIDATOR, STRUCTURED_TEXT_LINKS_VALIDATOR):
            validator = self.validators.get(key)
            if validator:
                return list(validator.get("item_types") or [])
        return []


class FieldUsage(BaseModel):
    """A container field, on any type, that allows a given block type."""

    id: str
    label: str
    api_key: str
    parent_type_id: str
    parent_type_name: str
    parent_type_api_key: str
    parent_is_block: bool
    localized: bool
    allowed_block_ids: List[str]
    position: int = 0
    hint: Optional[str] = None
    kind: ContainerKind

    @classmethod
    def from_field(cls, field: FieldDefinition, parent: TypeDefinition) -> "FieldUsage":
        return cls(
            id=field.id,
            label=field.label,
            api_key=field.api_key,
            parent_type_id=parent.id,
            parent_type_name=parent.name,
            parent_type_api_key=parent.api_key,
            parent_is_block=parent.modular_block,
            localized=field.localized,
            allowed_block_ids=field.allowed_block_ids(),
            position=field.position,
            hint=field.hint,
            kind=field.container_kind,
        )

    @property
    def qualified_name(self) -> str:
        return f"{self.parent_type_api_key}.{self.api_key}"


class PathStep(BaseModel):
    """One hop along a NestedPath."""

    model_config = ConfigDict(frozen=True)

    field_api_key: str
    expected_block_type_id: str = Field(
        ..., description="Block type expected inside this field at this hop"
    )
    localized: bool
    field_kind: ContainerKind


class NestedPath(BaseModel):
    """Field hops from a top-level type to the field that directly holds the target block."""

    model_config = ConfigDict(frozen=True)

    root_type_id: str
    root_type_name: str
    root_type_api_key: str
    steps: Tuple[PathStep, ...]
    usage: FieldUsage

    @property
    def is_in_localized_context(self) -> bool:
        """True when any hop goes through a localized field."""
        return any(step.localized for step in self.steps)

    @property
    def depth(self) -> int:
        return len(self.steps)

    @property
    def scope(self) -> str:
        """Field hops joined by dots, e.g. 'sections.cards'."""
        return ".".join(step.field_api_key for step in self.steps)

    def describe(self) -> str:
        """Readable form, e.g. 'page -> sections -> cards'."""
        return " -> ".join([self.root_type_api_key] + [s.field_api_key for s in self.steps])
