"""
Copy-on-write updates of block holders along a NestedPath.

A "holder" is the dict that carries the field referencing the target block:
the top-level record itself for one-hop paths, or the attributes of a parent
block for deeper ones. Updates rebuild every container on the way back up so
the caller writes a single top-level field value.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence

from ..models import ContainerKind, PathStep
from ..models.blocks import get_block_attributes, get_block_id, get_block_type_id, make_block
from .document import replace_referenced_blocks
from .locator import extract_blocks, is_localized_value

# (holder attributes, locale, positional trail) -> field changes, or None when nothing changes
HolderUpdate = Callable[[Dict[str, Any], Optional[str], List[int]], Optional[Dict[str, Any]]]


def with_attributes(block: Dict[str, Any], attributes: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of block carrying new attributes, in the canonical shape."""
    return make_block(get_block_type_id(block), attributes, get_block_id(block))


def block_reference(block: Any) -> Any:
    """What to send back for a block that has not changed: its id when it has one."""
    if isinstance(block, dict):
        return get_block_id(block) or block
    return block


def rebuild_container(value: Any, kind: ContainerKind, blocks: List[Any],
                      updated: Dict[int, Dict[str, Any]]) -> Any:
    """
    Rebuild one (per-locale) container value with some of its blocks replaced.

    Args:
        value: Original container value
        kind: Container kind of the field
        blocks: The blocks of value, as extract_blocks returned them
        updated: Replacement blocks keyed by their index in blocks
    """
    if kind == ContainerKind.RICH_TEXT:
        return [updated[i] if i in updated else block_reference(block) for i, block in enumerate(blocks)]
    if kind == ContainerKind.SINGLE_BLOCK:
        return updated.get(0, value)
    by_id = {get_block_id(blocks[i]): block for i, block in updated.items() if get_block_id(blocks[i])}
    return replace_referenced_blocks(value, by_id)


def strip_block_type(value: Any, kind: ContainerKind, type_id: str) -> Any:
    """Container value without the blocks of type_id (unchanged blocks become id references)."""
    if kind == ContainerKind.RICH_TEXT:
        return [
            block_reference(block) for block in value or []
            if not (isinstance(block, dict) and get_block_type_id(block) == type_id)
        ]
    if kind == ContainerKind.SINGLE_BLOCK:
        if isinstance(value, dict) and get_block_type_id(value) == type_id:
            return None
        return block_reference(value)
    raise ValueError(f"Cannot strip blocks from a {kind.value} field")


def update_holders(record: Dict[str, Any], parent_steps: Sequence[PathStep],
                   update: HolderUpdate) -> Optional[Dict[str, Any]]:
    """
    Apply update to every holder reached through parent_steps.

    Args:
        record: Top-level record, read with nested blocks
        parent_steps: Hops leading to the holders (all but the last hop of a path)
        update: Computes the field changes for one holder

    Returns:
        Top-level field values to write, or None when nothing changed
    """
    if not parent_steps:
        return update(record, None, [])
    root_key = parent_steps[0].field_api_key
    new_value = _update_field(record.get(root_key), parent_steps, 0, update, [], None)
    return None if new_value is None else {root_key: new_value}


def _update_field(value: Any, steps: Sequence[PathStep], depth: int, update: HolderUpdate,
                  trail: List[int], locale: Optional[str]) -> Any:
    if not value:
        return None
    if not is_localized_value(value, steps[depth].localized):
        return _update_container(value, steps, depth, update, trail, locale)

    changed = False
    result: Dict[str, Any] = {}
    for loc, loc_value in value.items():
        new_value = _update_container(loc_value, steps, depth, update, trail, loc) if loc_value else None
        if new_value is None:
            result[loc] = as_references(loc_value, steps[depth].field_kind)
        else:
            result[loc] = new_value
            changed = True
    return result if changed else None


def as_references(value: Any, kind: ContainerKind) -> Any:
    """An untouched container value, with its blocks sent back as id references."""
    if kind == ContainerKind.RICH_TEXT:
        return [block_reference(block) for block in value or []]
    if kind == ContainerKind.SINGLE_BLOCK:
        return block_reference(value)
    return value


def _update_container(value: Any, steps: Sequence[PathStep], depth: int, update: HolderUpdate,
                      trail: List[int], locale: Optional[str]) -> Any:
    step = steps[depth]
    blocks = extract_blocks(value, step.field_kind)
    updated: Dict[int, Dict[str, Any]] = {}
    last = depth == len(steps) - 1

    for index, block in enumerate(blocks):
        if not isinstance(block, dict) or get_block_type_id(block) != step.expected_block_type_id:
            continue
        attributes = get_block_attributes(block)
        if last:
            changes = update(attributes, locale, trail + [index])
        else:
            nested_key = steps[depth + 1].field_api_key
            nested = _update_field(attributes.get(nested_key), steps, depth + 1, update, trail + [index], locale)
            changes = None if nested is None else {nested_key: nested}
        if changes:
            updated[index] = with_attributes(block, {**attributes, **changes})

    if not updated:
        return None
    return rebuild_container(value, step.field_kind, blocks, updated)
