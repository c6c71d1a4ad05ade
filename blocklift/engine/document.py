"""
Rich-document (structured text) rewriting for Blocklift.

Every function here rebuilds the tree instead of mutating it, and dispatches
over the full NodeType set: a node tag outside the set raises
UnknownNodeError rather than passing through silently.
"""

from typing import Any, Callable, Dict, List, Optional, Set

from ..config import ReplacementPolicy
from ..models.blocks import get_block_type_id
from ..models.document import (
    BLOCK_NODE_TYPES,
    RECORD_NODE_TYPES,
    NodeType,
    find_record,
    inline_item,
    inlined_block_type_id,
    is_structured_text_value,
    node_item_id,
    node_type,
    reference_paragraph,
)

# Nodes rebuilt by recursing into their children
CONTAINER_NODE_TYPES = frozenset([
    NodeType.ROOT,
    NodeType.PARAGRAPH,
    NodeType.HEADING,
    NodeType.LIST,
    NodeType.LIST_ITEM,
    NodeType.BLOCKQUOTE,
    NodeType.LINK,
])

# Nodes copied as they are
LEAF_NODE_TYPES = frozenset([NodeType.SPAN, NodeType.CODE, NodeType.THEMATIC_BREAK])


def _minimal(records: List[Any]) -> List[Dict[str, str]]:
    """Reduce a blocks/links list to [{"id": ...}], dropping duplicates."""
    seen: List[str] = []
    for record in records:
        record_id = record if isinstance(record, str) else record.get("id")
        if record_id and record_id not in seen:
            seen.append(record_id)
    return [{"id": record_id} for record_id in seen]


class _RewriteState:
    def __init__(self, blocks: List[Any]):
        self.blocks = blocks
        self.converted: Set[str] = set()
        self.new_links: List[str] = []

    def block_type(self, node: Dict[str, Any]) -> Optional[str]:
        type_id = inlined_block_type_id(node)
        if type_id is None:
            block = find_record(self.blocks, node_item_id(node))
            type_id = get_block_type_id(block) if block else None
        return type_id


class RichDocumentTransformer:
    """
    Rewrites block/inlineBlock nodes of one block type into record references.

    In REPLACE mode each matching node becomes an inlineItem pointing at the
    mapped record. In AUGMENT mode the node is kept and the inlineItem is
    inserted right after it. A reference that would land directly under the
    root is wrapped in a paragraph.

    Args:
        target_type_id: Block type whose nodes are rewritten
        mapping: Anything with get(block_id) -> record id or None
        policy: REPLACE or AUGMENT
    """

    def __init__(self, target_type_id: str, mapping, policy: ReplacementPolicy = ReplacementPolicy.REPLACE):
        self.target_type_id = target_type_id
        self.mapping = mapping
        self.policy = policy

    def transform(self, value: Any) -> Optional[Dict[str, Any]]:
        """
        Rewrite one structured text value.

        Returns:
            The rewritten value with blocks/links normalized to {id} entries,
            or None when no node of the target type has a mapping
        """
        if not document_has_block_type(value, self.target_type_id):
            return None

        state = _RewriteState(value.get("blocks") or [])
        [document] = self._rebuild(value["document"], state, at_root=False)
        if not state.new_links:
            return None

        result = {key: item for key, item in value.items() if key not in ("blocks", "links")}
        result["document"] = document

        blocks = [
            block for block in _minimal(value.get("blocks") or [])
            if self.policy == ReplacementPolicy.AUGMENT or block["id"] not in state.converted
        ]
        if blocks:
            result["blocks"] = blocks
        result["links"] = _minimal(list(value.get("links") or []) + state.new_links)
        return result

    def _rebuild(self, node: Dict[str, Any], state: _RewriteState, at_root: bool) -> List[Dict[str, Any]]:
        handler = self._HANDLERS[node_type(node)]
        return handler(self, node, state, at_root)

    def _container(self, node, state, at_root):
        children: List[Dict[str, Any]] = []
        children_at_root = node_type(node) == NodeType.ROOT
        for child in node.get("children") or []:
            children.extend(self._rebuild(child, state, children_at_root))
        return [{**node, "children": children}]

    def _leaf(self, node, state, at_root):
        return [dict(node)]

    def _record_reference(self, node, state, at_root):
        rebuilt = {**node, "item": node_item_id(node)}
        if "children" in node:
            children: List[Dict[str, Any]] = []
            for child in node["children"]:
                children.extend(self._rebuild(child, state, False))
            rebuilt["children"] = children
        return [rebuilt]

    def _block_reference(self, node, state, at_root):
        block_id = node_item_id(node)
        kept = {**node, "item": block_id}
        if block_id is None or state.block_type(node) != self.target_type_id:
            return [kept]
        record_id = self.mapping.get(block_id)
        if record_id is None:
            return [kept]

        state.converted.add(block_id)
        state.new_links.append(record_id)
        reference = reference_paragraph(record_id) if at_root else inline_item(record_id)
        if self.policy == ReplacementPolicy.REPLACE:
            return [reference]
        return [kept, reference]

    _HANDLERS: Dict[NodeType, Callable] = {}


RichDocumentTransformer._HANDLERS = {
    **{kind: RichDocumentTransformer._container for kind in CONTAINER_NODE_TYPES},
    **{kind: RichDocumentTransformer._leaf for kind in LEAF_NODE_TYPES},
    **{kind: RichDocumentTransformer._block_reference for kind in BLOCK_NODE_TYPES},
    **{kind: RichDocumentTransformer._record_reference for kind in RECORD_NODE_TYPES},
}

_unhandled = set(NodeType) - set(RichDocumentTransformer._HANDLERS)
if _unhandled:
    raise RuntimeError(f"No rich-document handler for node types: {sorted(k.value for k in _unhandled)}")


def map_block_nodes(value: Dict[str, Any], replace: Callable[[Dict[str, Any]], Any]) -> Dict[str, Any]:
    """
    Rebuild a document, passing every block/inlineBlock node through replace.

    replace returns the new item for the node (a block record or an id).
    Record nodes and all other nodes are copied unchanged.
    """
    def rebuild(node: Dict[str, Any]) -> Dict[str, Any]:
        kind = node_type(node)
        rebuilt = dict(node)
        if kind in BLOCK_NODE_TYPES:
            rebuilt["item"] = replace(node)
        elif kind not in CONTAINER_NODE_TYPES | LEAF_NODE_TYPES | RECORD_NODE_TYPES:
            raise RuntimeError(f"Unhandled node type {kind.value}")
        if "children" in node:
            rebuilt["children"] = [rebuild(child) for child in node["children"]]
        return rebuilt

    return {**value, "document": rebuild(value["document"])}


def replace_referenced_blocks(value: Dict[str, Any], updated: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    """
    Swap updated block records into a document.

    Args:
        value: Structured text value
        updated: New block records keyed by block id

    Returns:
        The document with block nodes and the blocks list pointing at the updated records
    """
    def replace(node: Dict[str, Any]) -> Any:
        block_id = node_item_id(node)
        if block_id in updated and isinstance(node.get("item"), dict):
            return updated[block_id]
        return node.get("item")

    result = map_block_nodes(value, replace)
    if "blocks" in value:
        result["blocks"] = [
            updated.get(block.get("id"), block) if isinstance(block, dict) else block
            for block in value["blocks"]
        ]
    return result


def inline_blocks_for_creation(value: Dict[str, Any],
                               sanitize_block: Callable[[Dict[str, Any]], Dict[str, Any]]) -> Dict[str, Any]:
    """
    Prepare a structured text value for a record that does not exist yet.

    Block nodes get their block payload inlined (sanitized, without ids);
    record nodes keep only the record id. The blocks/links lists are dropped.
    """
    records = value.get("blocks") or []

    def replace(node: Dict[str, Any]) -> Any:
        item = node.get("item")
        if isinstance(item, str):
            item = find_record(records, item) or item
        return sanitize_block(item) if isinstance(item, dict) else item

    result = map_block_nodes(value, replace)
    result = {key: item for key, item in result.items() if key not in ("blocks", "links")}
    result["schema"] = "dast"
    result["document"] = _strip_record_items(result["document"])
    return result


def _strip_record_items(node: Dict[str, Any]) -> Dict[str, Any]:
    rebuilt = dict(node)
    if node_type(node) in RECORD_NODE_TYPES:
        rebuilt["item"] = node_item_id(node)
    if "children" in node:
        rebuilt["children"] = [_strip_record_items(child) for child in node["children"]]
    return rebuilt


def document_has_block_type(value: Any, type_id: str) -> bool:
    """True when a document references a block of type_id through any node."""
    if not is_structured_text_value(value):
        return False
    state = _RewriteState(value.get("blocks") or [])

    def visit(node: Dict[str, Any]) -> bool:
        if node_type(node) in BLOCK_NODE_TYPES and state.block_type(node) == type_id:
            return True
        return any(visit(child) for child in node.get("children") or [])

    return visit(value["document"])
