"""
Instance location for Blocklift.

Walks records along a NestedPath and collects the concrete embedded
instances of the target block type, optionally grouped across locales.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..models import BlockInstance, ContainerKind, GroupedInstance, NestedPath, instance_key
from ..models.blocks import get_block_attributes, get_block_id, get_block_type_id
from ..models.document import (
    BLOCK_NODE_TYPES,
    find_record,
    is_structured_text_value,
    node_item_id,
    node_type,
)
from ..repository import ContentRepository
from .locale import DEFAULT_LOCALE_KEY

# (block, positional trail, locale)
Occurrence = Tuple[Dict[str, Any], List[int], Optional[str]]


def document_blocks(value: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Block records actually referenced by block/inlineBlock nodes of a document, in tree order.

    Blocks listed in the companion "blocks" list but no longer referenced by
    any node are ignored. Nodes whose item is an id are resolved against that list.
    """
    records = value.get("blocks") or []
    found: List[Dict[str, Any]] = []

    def visit(node: Dict[str, Any]) -> None:
        kind = node_type(node)
        if kind in BLOCK_NODE_TYPES:
            item = node.get("item")
            if isinstance(item, dict):
                found.append(item)
            else:
                block = find_record(records, node_item_id(node))
                if block is not None:
                    found.append(block)
        for child in node.get("children") or []:
            visit(child)

    visit(value["document"])
    return found


def extract_blocks(value: Any, kind: ContainerKind) -> List[Any]:
    """Items of one (per-locale) container value, whatever its shape."""
    if not value:
        return []
    if kind == ContainerKind.RICH_TEXT:
        return value if isinstance(value, list) else []
    if kind == ContainerKind.STRUCTURED_TEXT:
        if is_structured_text_value(value):
            return document_blocks(value)
        return list(value.get("blocks") or []) if isinstance(value, dict) else []
    if kind == ContainerKind.SINGLE_BLOCK:
        return [value] if isinstance(value, dict) else []
    return []


def is_localized_value(value: Any, localized: bool) -> bool:
    """True when value is a per-locale hash of a localized field."""
    return localized and isinstance(value, dict) and not is_structured_text_value(value) \
        and "relationships" not in value and "attributes" not in value


def find_blocks_at_path(record: Dict[str, Any], path: NestedPath, target_id: str) -> List[Occurrence]:
    """
    Find every target block in a record along the hops of path.

    Returns:
        (block, positional trail, locale) for each occurrence
    """
    results: List[Occurrence] = []
    steps = path.steps

    def traverse(data: Dict[str, Any], depth: int, trail: List[int], locale: Optional[str]) -> None:
        step = steps[depth]
        value = data.get(step.field_api_key)
        if not value:
            return

        if is_localized_value(value, step.localized):
            per_locale = [(loc, loc_value) for loc, loc_value in value.items()]
        else:
            per_locale = [(locale, value)]

        last = depth == len(steps) - 1
        for loc, loc_value in per_locale:
            for index, block in enumerate(extract_blocks(loc_value, step.field_kind)):
                if not isinstance(block, dict):
                    continue
                block_type = get_block_type_id(block)
                if last:
                    if block_type == target_id:
                        results.append((block, trail + [index], loc))
                elif block_type == step.expected_block_type_id:
                    traverse(get_block_attributes(block), depth + 1, trail + [index], loc)

    traverse(record, 0, [], None)
    return results


def group_instances(instances: Iterable[BlockInstance]) -> List[GroupedInstance]:
    """
    Merge instances occupying the same structural slot across locales.

    Groups are keyed by (record id, field hops, positional trail); data from a
    non-localized hop is stored under DEFAULT_LOCALE_KEY.
    """
    groups: Dict[str, GroupedInstance] = {}
    for instance in instances:
        key = instance.slot_key
        group = groups.get(key)
        if group is None:
            group = GroupedInstance(group_key=key, record_id=instance.record_id, indices=list(instance.indices))
            groups[key] = group
        locale_key = instance.locale or DEFAULT_LOCALE_KEY
        group.locale_data[locale_key] = instance.data
        if instance.instance_id not in group.instance_ids:
            group.instance_ids.append(instance.instance_id)
    return list(groups.values())


class InstanceLocator:
    """
    Finds instances of a block type in the records of a path's root type.
    """

    def __init__(self, repository: ContentRepository):
        self.repository = repository

    def find_instances(self, path: NestedPath, target_id: str) -> List[BlockInstance]:
        """
        Collect all instances of target_id reachable along path.

        Args:
            path: Route from a top-level type to the containing field
            target_id: The embeddable type

        Returns:
            BlockInstances in record order
        """
        instances: List[BlockInstance] = []
        for record in self.repository.iter_records(path.root_type_id, nested=True):
            for block, trail, locale in find_blocks_at_path(record, path, target_id):
                block_id = get_block_id(block)
                if block_id is None:
                    # Blocks without ids get a key that is unique per locale
                    block_id = instance_key(record["id"], trail, path.scope)
                    if locale:
                        block_id = f"{block_id}_{locale}"
                instances.append(BlockInstance(
                    record_id=record["id"],
                    locale=locale,
                    data=get_block_attributes(block),
                    instance_id=block_id,
                    indices=trail,
                    scope=path.scope,
                ))
        logging.info(f"Found {len(instances)} instances along {path.describe()}")
        return instances

    def find_grouped_instances(self, path: NestedPath, target_id: str) -> List[GroupedInstance]:
        """Collect instances of target_id along path, merged per structural slot."""
        groups = group_instances(self.find_instances(path, target_id))
        logging.info(f"Grouped into {len(groups)} locale groups")
        return groups

    def affected_record_ids(self, path: NestedPath, target_id: str) -> Set[str]:
        """Ids of root records holding at least one instance along path."""
        return {
            record["id"]
            for record in self.repository.iter_records(path.root_type_id, nested=True)
            if find_blocks_at_path(record, path, target_id)
        }
