"""
Accessors for embedded block records as returned by nested record reads.

A block arrives in one of several shapes depending on the client and the
read mode:

    {"id": "b1", "type": "item", "attributes": {...},
     "relationships": {"item_type": {"data": {"type": "item_type", "id": "T"}}}}
    {"id": "b1", "__itemTypeId": "T", "title": "..."}
    {"id": "b1", "item_type": "T", "title": "..."}
    {"id": "b1", "item_type": {"id": "T"}, "title": "..."}
"""

from typing import Any, Dict, Optional

BOOKKEEPING_KEYS = frozenset(
    ["id", "type", "item_type", "__itemTypeId", "relationships", "meta", "creator", "attributes"]
)


def get_block_type_id(block: Dict[str, Any]) -> Optional[str]:
    """Return the block's type id from whichever shape carries it."""
    if isinstance(block.get("__itemTypeId"), str):
        return block["__itemTypeId"]

    relationships = block.get("relationships")
    if isinstance(relationships, dict):
        item_type = relationships.get("item_type")
        if isinstance(item_type, dict):
            data = item_type.get("data")
            if isinstance(data, dict) and isinstance(data.get("id"), str):
                return data["id"]

    item_type = block.get("item_type")
    if isinstance(item_type, str):
        return item_type
    if isinstance(item_type, dict) and isinstance(item_type.get("id"), str):
        return item_type["id"]
    return None


def get_block_id(block: Dict[str, Any]) -> Optional[str]:
    block_id = block.get("id")
    return block_id if isinstance(block_id, str) else None


def get_block_attributes(block: Dict[str, Any]) -> Dict[str, Any]:
    """Field values of a block, from its attributes or from the flat shape."""
    attributes = block.get("attributes")
    if isinstance(attributes, dict):
        return attributes
    return {key: value for key, value in block.items() if key not in BOOKKEEPING_KEYS}


def is_block_record(value: Any) -> bool:
    """True when value looks like an embedded block record."""
    if not isinstance(value, dict):
        return False
    if "__itemTypeId" in value or "item_type" in value:
        return True
    relationships = value.get("relationships")
    return isinstance(relationships, dict) and "item_type" in relationships


def make_block(type_id: str, attributes: Dict[str, Any], block_id: Optional[str] = None) -> Dict[str, Any]:
    """Build a block record in the canonical JSON:API shape."""
    block: Dict[str, Any] = {
        "type": "item",
        "attributes": dict(attributes),
        "relationships": {"item_type": {"data": {"type": "item_type", "id": type_id}}},
    }
    if block_id is not None:
        block = {"id": block_id, **block}
    return block
