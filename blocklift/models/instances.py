"""
Embedded block occurrences found in concrete records.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


def instance_key(record_id: str, indices: List[int], scope: str = "") -> str:
    """
    Synthetic key for a structural slot: owning record, field hops and positional trail.

    Used as the id of blocks that carry none, and as the group key for
    locale merging. scope is NestedPath.scope, so equal trails under
    different fields of one record get different keys.
    """
    return "_".join([record_id] + ([scope] if scope else []) + [str(i) for i in indices])


class BlockInstance(BaseModel):
    """One concrete embedded occurrence of the target block type."""

    record_id: str = Field(..., description="Top-level record that owns the occurrence")
    locale: Optional[str] = Field(default=None, description="Locale the occurrence was read from")
    data: Dict[str, Any] = Field(default_factory=dict, description="Raw field values of the block")
    instance_id: str = Field(..., description="Block id, or a synthetic id when the block has none")
    indices: List[int] = Field(
        default_factory=list,
        description="Position of the block at each hop of the path"
    )
    scope: str = Field(default="", description="Field hops of the path the block was read along")

    @property
    def slot_key(self) -> str:
        return instance_key(self.record_id, self.indices, self.scope)


class GroupedInstance(BaseModel):
    """
    Occurrences sharing one structural slot across locales.

    All instance ids map to a single standalone record whose fields are
    stored per locale.
    """

    group_key: str
    record_id: str
    indices: List[int] = Field(default_factory=list)
    locale_data: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="Block field values keyed by locale ('__default__' when not localized)"
    )
    instance_ids: List[str] = Field(default_factory=list)

    @property
    def reference_id(self) -> str:
        return self.instance_ids[0] if self.instance_ids else self.group_key

    @property
    def all_keys(self) -> List[str]:
        """Every key the created record must be registered under."""
        keys = list(self.instance_ids)
        if self.group_key not in keys:
            keys.append(self.group_key)
        return keys
