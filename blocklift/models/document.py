"""
Rich-document (structured text) wire format.

A structured text value is a dict:

    {"schema": "dast",
     "document": {"type": "root", "children": [...]},
     "blocks": [...],   # embedded block records referenced by block/inlineBlock nodes
     "links": [...]}    # records referenced by itemLink/inlineItem nodes

Nodes are plain dicts tagged by their "type". NodeType is the closed set of
tags; every tree-processing function dispatches over all of them.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from ..errors import UnknownNodeError
from .blocks import get_block_type_id


class NodeType(str, Enum):
    ROOT = "root"
    PARAGRAPH = "paragraph"
    HEADING = "heading"
    LIST = "list"
    LIST_ITEM = "listItem"
    CODE = "code"
    BLOCKQUOTE = "blockquote"
    BLOCK = "block"
    INLINE_BLOCK = "inlineBlock"
    THEMATIC_BREAK = "thematicBreak"
    SPAN = "span"
    LINK = "link"
    ITEM_LINK = "itemLink"
    INLINE_ITEM = "inlineItem"


# Nodes whose "item" points at an embedded block
BLOCK_NODE_TYPES = frozenset([NodeType.BLOCK, NodeType.INLINE_BLOCK])

# Nodes whose "item" points at a standalone record
RECORD_NODE_TYPES = frozenset([NodeType.ITEM_LINK, NodeType.INLINE_ITEM])


def node_type(node: Dict[str, Any]) -> NodeType:
    """Return the tag of a node, raising UnknownNodeError for anything outside the closed set."""
    try:
        return NodeType(node.get("type"))
    except ValueError:
        raise UnknownNodeError(node.get("type")) from None


def is_structured_text_value(value: Any) -> bool:
    """True for a structured text field value (with or without the schema marker)."""
    if not isinstance(value, dict):
        return False
    document = value.get("document")
    if value.get("schema") == "dast" and document is not None:
        return True
    return (
        isinstance(document, dict)
        and document.get("type") == NodeType.ROOT.value
        and isinstance(document.get("children"), list)
    )


def node_item_id(node: Dict[str, Any]) -> Optional[str]:
    """The id referenced by a block/record node; item may be an id or an inlined record."""
    item = node.get("item")
    if isinstance(item, str):
        return item
    if isinstance(item, dict) and isinstance(item.get("id"), str):
        return item["id"]
    return None


def inlined_block_type_id(node: Dict[str, Any]) -> Optional[str]:
    """Block type of an inlined block node, when the read expanded it."""
    item = node.get("item")
    if isinstance(item, dict):
        return get_block_type_id(item)
    return None


def find_record(records: List[Any], record_id: str) -> Optional[Dict[str, Any]]:
    """Find a record (block or link) by id in a companion list."""
    for record in records or []:
        if isinstance(record, dict) and record.get("id") == record_id:
            return record
    return None


def span(value: str = "") -> Dict[str, Any]:
    return {"type": NodeType.SPAN.value, "value": value}


def inline_item(record_id: str) -> Dict[str, Any]:
    return {"type": NodeType.INLINE_ITEM.value, "item": record_id}


def paragraph(children: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"type": NodeType.PARAGRAPH.value, "children": children}


def reference_paragraph(record_id: str) -> Dict[str, Any]:
    """
    Paragraph wrapping a reference to record_id, for use at root level.

    The leading empty span keeps renderers from treating the paragraph as empty.
    """
    return paragraph([span(""), inline_item(record_id)])
