"""
In-memory content repository for Blocklift.

Keeps types, fields and records in dictionaries. It backs the test suite and
dry runs. With strict validation enabled it rejects the writes the remote API
rejects: blocks of types a field does not allow, links to types a field does
not accept, localized values missing locales, and reference nodes placed at
the root of a structured text document.
"""

import copy
import itertools
import logging
import threading
from typing import Any, Dict, Iterator, List, Optional, Set

from ..errors import RepositoryError, UnknownNodeError
from ..models import TypeDefinition, FieldDefinition
from ..models.blocks import get_block_type_id, get_block_id, get_block_attributes, make_block
from ..models.document import (
    NodeType,
    BLOCK_NODE_TYPES,
    RECORD_NODE_TYPES,
    is_structured_text_value,
    node_item_id,
    node_type,
)
from .base import ContentRepository

LIST_FIELD_TYPES = {"rich_text", "links"}

ROOT_CHILD_TYPES = {
    NodeType.PARAGRAPH,
    NodeType.HEADING,
    NodeType.LIST,
    NodeType.CODE,
    NodeType.BLOCKQUOTE,
    NodeType.BLOCK,
    NodeType.THEMATIC_BREAK,
}

FIELD_ATTRIBUTES = (
    "label", "api_key", "position", "hint", "validators", "appearance",
    "fieldset", "localized", "default_value",
)


class InMemoryRepository(ContentRepository):
    """
    Dictionary-backed content repository.

    Args:
        locales: Project locales; the first one is the default
        strict: Validate writes the way the remote API does
        plural_model_keys: Refuse renaming top-level types to api_keys not ending in "s"
    """

    def __init__(self, locales: Optional[List[str]] = None, strict: bool = True,
                 plural_model_keys: bool = False):
        self.locales = list(locales or ["en"])
        self.strict = strict
        self.plural_model_keys = plural_model_keys
        # Record ids whose updates fail, to exercise best-effort migration
        self.failing_record_ids: Set[str] = set()
        self._types: Dict[str, TypeDefinition] = {}
        self._fields: Dict[str, FieldDefinition] = {}
        self._records: Dict[str, Dict[str, Any]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    def _next_id(self, prefix: str) -> str:
        with self._lock:
            return f"{prefix}{next(self._ids)}"

    # Types

    def list_types(self) -> List[TypeDefinition]:
        return list(self._types.values())

    def find_type(self, type_id: str) -> TypeDefinition:
        if type_id in self._types:
            return self._types[type_id]
        for type_def in self._types.values():
            if type_def.api_key == type_id:
                return type_def
        raise RepositoryError(f"Item type not found: {type_id}", 404)

    def create_type(self, attributes: Dict[str, Any]) -> TypeDefinition:
        with self._lock:
            modular_block = bool(attributes.get("modular_block", False))
            self._check_type_key(attributes["api_key"], modular_block)
            type_def = TypeDefinition(
                id=attributes.get("id") or self._next_id("type"),
                name=attributes["name"],
                api_key=attributes["api_key"],
                modular_block=modular_block,
            )
            self._types[type_def.id] = type_def
            return type_def

    def update_type(self, type_id: str, attributes: Dict[str, Any]) -> TypeDefinition:
        with self._lock:
            type_def = self.find_type(type_id)
            updates: Dict[str, Any] = {}
            if "name" in attributes:
                updates["name"] = attributes["name"]
            if "api_key" in attributes:
                self._check_type_key(attributes["api_key"], type_def.modular_block,
                                     exclude_id=type_def.id, rename=True)
                updates["api_key"] = attributes["api_key"]
            if "title_field" in attributes:
                field_id = attributes["title_field"]
                if field_id is not None:
                    field = self.find_field(field_id)
                    if field.item_type_id != type_def.id:
                        raise RepositoryError(f"Field {field_id} does not belong to {type_def.api_key}", 422)
                updates["title_field_id"] = field_id
            type_def = type_def.model_copy(update=updates)
            self._types[type_def.id] = type_def
            return type_def

    def destroy_type(self, type_id: str) -> None:
        with self._lock:
            type_def = self.find_type(type_id)
            if type_def.modular_block and self.strict:
                in_use = sum(
                    1 for record in self._records.values()
                    for block in self._iter_blocks(record)
                    if get_block_type_id(block) == type_def.id
                )
                if in_use:
                    raise RepositoryError(
                        f"Block type {type_def.api_key} is still used by {in_use} embedded instances", 422
                    )
            for record_id in [rid for rid, r in self._records.items() if r["item_type"]["id"] == type_def.id]:
                del self._records[record_id]
            for field_id in [fid for fid, f in self._fields.items() if f.item_type_id == type_def.id]:
                del self._fields[field_id]
            for field in list(self._fields.values()):
                self._fields[field.id] = field.model_copy(
                    update={"validators": _without_type(field.validators, type_def.id)}
                )
            del self._types[type_def.id]
            logging.debug(f"Destroyed type {type_def.api_key}")

    def _check_type_key(self, api_key: str, modular_block: bool, exclude_id: Optional[str] = None,
                        rename: bool = False) -> None:
        for other in self._types.values():
            if other.api_key == api_key and other.id != exclude_id:
                raise RepositoryError(f"api_key '{api_key}' is already taken", 422)
        if rename and self.plural_model_keys and not modular_block and not api_key.endswith("s"):
            raise RepositoryError(f"api_key '{api_key}' of a model must be plural", 422)

    # Fields

    def list_fields(self, type_id: str) -> List[FieldDefinition]:
        type_def = self.find_type(type_id)
        fields = [f for f in self._fields.values() if f.item_type_id == type_def.id]
        return sorted(fields, key=lambda f: f.position)

    def find_field(self, field_id: str) -> FieldDefinition:
        if field_id not in self._fields:
            raise RepositoryError(f"Field not found: {field_id}", 404)
        return self._fields[field_id]

    def create_field(self, type_id: str, attributes: Dict[str, Any]) -> FieldDefinition:
        with self._lock:
            type_def = self.find_type(type_id)
            existing = self.list_fields(type_def.id)
            if any(f.api_key == attributes["api_key"] for f in existing):
                raise RepositoryError(
                    f"Field api_key '{attributes['api_key']}' already exists on {type_def.api_key}", 422
                )
            field = FieldDefinition(
                id=attributes.get("id") or self._next_id("field"),
                label=attributes["label"],
                api_key=attributes["api_key"],
                field_type=attributes["field_type"],
                item_type_id=type_def.id,
                localized=bool(attributes.get("localized", False)),
                validators=copy.deepcopy(attributes.get("validators") or {}),
                appearance=copy.deepcopy(attributes.get("appearance") or {}),
                position=attributes.get("position", len(existing) + 1),
                hint=attributes.get("hint"),
                default_value=attributes.get("default_value"),
                fieldset=attributes.get("fieldset"),
            )
            self._fields[field.id] = field
            for holder in list(self._holders(type_def)):
                holder.setdefault(field.api_key, self._default_value(field))
            return field

    def update_field(self, field_id: str, attributes: Dict[str, Any]) -> FieldDefinition:
        with self._lock:
            field = self.find_field(field_id)
            updates = {key: copy.deepcopy(attributes[key]) for key in FIELD_ATTRIBUTES if key in attributes}
            new_key = updates.get("api_key", field.api_key)
            if new_key != field.api_key:
                siblings = self.list_fields(field.item_type_id)
                if any(f.api_key == new_key and f.id != field.id for f in siblings):
                    raise RepositoryError(f"Field api_key '{new_key}' already exists", 422)
                for holder in list(self._holders(self._types[field.item_type_id])):
                    if field.api_key in holder:
                        holder[new_key] = holder.pop(field.api_key)
            field = field.model_copy(update=updates)
            self._fields[field.id] = field
            return field

    def destroy_field(self, field_id: str) -> None:
        with self._lock:
            field = self.find_field(field_id)
            for holder in list(self._holders(self._types[field.item_type_id])):
                holder.pop(field.api_key, None)
            del self._fields[field.id]

    def _holders(self, type_def: TypeDefinition) -> Iterator[Dict[str, Any]]:
        """Dicts holding field values of type_def: records, or block attributes."""
        for record in self._records.values():
            if type_def.modular_block:
                for block in self._iter_blocks(record):
                    if get_block_type_id(block) == type_def.id:
                        yield block["attributes"]
            elif record["item_type"]["id"] == type_def.id:
                yield record

    def _iter_blocks(self, value: Any) -> Iterator[Dict[str, Any]]:
        """Every stored block nested anywhere inside value, depth first."""
        if isinstance(value, list):
            for item in value:
                yield from self._iter_blocks(item)
        elif isinstance(value, dict):
            if "relationships" in value and "attributes" in value:
                yield value
                for nested in list(value["attributes"].values()):
                    yield from self._iter_blocks(nested)
            elif is_structured_text_value(value):
                for block in value.get("blocks") or []:
                    yield from self._iter_blocks(block)
            else:
                for key, nested in list(value.items()):
                    if key not in ("id", "item_type"):
                        yield from self._iter_blocks(nested)

    # Records

    def iter_records(self, type_id: str, nested: bool = True) -> Iterator[Dict[str, Any]]:
        type_def = self.find_type(type_id)
        for record in list(self._records.values()):
            if record["item_type"]["id"] == type_def.id:
                yield self._export(record, nested)

    def find_record(self, record_id: str, nested: bool = True) -> Dict[str, Any]:
        if record_id not in self._records:
            raise RepositoryError(f"Record not found: {record_id}", 404)
        return self._export(self._records[record_id], nested)

    def create_record(self, type_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        type_def = self.find_type(type_id)
        if type_def.modular_block:
            raise RepositoryError(f"Cannot create standalone records of block type {type_def.api_key}", 422)
        record_id = self._next_id("rec")
        fields = {f.api_key: f for f in self.list_fields(type_def.id)}
        record: Dict[str, Any] = {"id": record_id, "item_type": {"type": "item_type", "id": type_def.id}}
        self._apply(record, fields, attributes, {})
        for api_key, field in fields.items():
            record.setdefault(api_key, self._default_value(field))
        with self._lock:
            self._records[record_id] = record
        return copy.deepcopy(record)

    def update_record(self, record_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        if record_id in self.failing_record_ids:
            raise RepositoryError(f"Record {record_id} rejected the update", 422)
        with self._lock:
            if record_id not in self._records:
                raise RepositoryError(f"Record not found: {record_id}", 404)
            record = self._records[record_id]
            fields = {f.api_key: f for f in self.list_fields(record["item_type"]["id"])}
            existing = {get_block_id(b): b for b in self._iter_blocks(record)}
            updated = dict(record)
            self._apply(updated, fields, attributes, existing)
            self._records[record_id] = updated
            return copy.deepcopy(updated)

    def _apply(self, target: Dict[str, Any], fields: Dict[str, FieldDefinition],
               attributes: Dict[str, Any], existing: Dict[str, Dict[str, Any]]) -> None:
        for key, value in attributes.items():
            field = fields.get(key)
            if field is None:
                if self.strict:
                    raise RepositoryError(f"Unknown field '{key}'", 422)
                target[key] = copy.deepcopy(value)
                continue
            target[key] = self._normalize_field(field, value, existing)

    def _export(self, record: Dict[str, Any], nested: bool) -> Dict[str, Any]:
        exported = copy.deepcopy(record)
        if nested:
            return exported
        for field in self.list_fields(record["item_type"]["id"]):
            if field.api_key not in exported:
                continue
            value = exported[field.api_key]
            if field.localized and isinstance(value, dict):
                exported[field.api_key] = {loc: _collapse(field, v) for loc, v in value.items()}
            else:
                exported[field.api_key] = _collapse(field, value)
        return exported

    # Write normalization and validation

    def _default_value(self, field: FieldDefinition) -> Any:
        base = [] if field.field_type in LIST_FIELD_TYPES else None
        if field.localized:
            return {locale: copy.deepcopy(base) for locale in self.locales}
        return base

    def _normalize_field(self, field: FieldDefinition, value: Any, existing: Dict[str, Dict[str, Any]]) -> Any:
        if field.localized:
            if not isinstance(value, dict):
                if self.strict:
                    raise RepositoryError(f"Field '{field.api_key}' is localized and needs a value per locale", 422)
                return copy.deepcopy(value)
            if self.strict and set(value) != set(self.locales):
                raise RepositoryError(
                    f"Field '{field.api_key}' must specify the locales {self.locales}, got {sorted(value)}", 422
                )
            return {locale: self._normalize_value(field, v, existing) for locale, v in value.items()}
        return self._normalize_value(field, value, existing)

    def _normalize_value(self, field: FieldDefinition, value: Any, existing: Dict[str, Dict[str, Any]]) -> Any:
        kind = field.field_type
        if kind == "rich_text":
            return [self._normalize_block(b, existing, field) for b in value or []]
        if kind == "single_block":
            return None if value is None else self._normalize_block(value, existing, field)
        if kind == "structured_text":
            return None if value is None else self._normalize_document(field, value, existing)
        if kind == "links":
            ids = [_link_id(v) for v in value or []]
            for record_id in ids:
                self._check_link(field, record_id)
            return ids
        if kind == "link":
            if value is None:
                return None
            record_id = _link_id(value)
            self._check_link(field, record_id)
            return record_id
        return copy.deepcopy(value)

    def _check_link(self, field: FieldDefinition, record_id: str) -> None:
        if not self.strict:
            return
        target = self._records.get(record_id)
        if target is None:
            raise RepositoryError(f"Field '{field.api_key}' links to unknown record {record_id}", 422)
        if target["item_type"]["id"] not in field.allowed_link_ids():
            raise RepositoryError(
                f"Field '{field.api_key}' does not accept records of type {target['item_type']['id']}", 422
            )

    def _normalize_block(self, block: Any, existing: Dict[str, Dict[str, Any]],
                         field: FieldDefinition) -> Dict[str, Any]:
        if isinstance(block, str) or (isinstance(block, dict) and set(block) == {"id"}):
            block_id = block if isinstance(block, str) else block["id"]
            if block_id not in existing:
                raise RepositoryError(f"Unknown block {block_id} in field '{field.api_key}'", 422)
            block = existing[block_id]
        type_id = get_block_type_id(block)
        if self.strict:
            type_def = self._types.get(type_id)
            if type_def is None or not type_def.modular_block:
                raise RepositoryError(f"'{type_id}' is not a block type", 422)
            if type_id not in field.allowed_block_ids():
                raise RepositoryError(f"Block type {type_id} is not allowed in field '{field.api_key}'", 422)
        block_fields = {f.api_key: f for f in self.list_fields(type_id)} if type_id in self._types else {}
        attributes: Dict[str, Any] = {}
        for key, value in get_block_attributes(block).items():
            sub_field = block_fields.get(key)
            if sub_field is None:
                attributes[key] = copy.deepcopy(value)
            else:
                attributes[key] = self._normalize_field(sub_field, value, existing)
        for key, sub_field in block_fields.items():
            attributes.setdefault(key, self._default_value(sub_field))
        return make_block(type_id, attributes, get_block_id(block) or self._next_id("blk"))

    def _normalize_document(self, field: FieldDefinition, value: Any,
                            existing: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
        if not is_structured_text_value(value):
            raise RepositoryError(f"Field '{field.api_key}' expects a structured text document", 422)
        pool = dict(existing)
        for block in value.get("blocks") or []:
            if isinstance(block, dict) and get_block_id(block) and set(block) != {"id"}:
                pool[get_block_id(block)] = block
        blocks: List[Dict[str, Any]] = []
        links: List[str] = []
        for link in value.get("links") or []:
            if _link_id(link) not in links:
                links.append(_link_id(link))
        try:
            document = self._normalize_node(value["document"], field, pool, blocks, links, None)
        except UnknownNodeError as e:
            raise RepositoryError(str(e), 422) from e
        for record_id in links:
            self._check_link(field, record_id)
        result: Dict[str, Any] = {"schema": "dast", "document": document}
        if blocks:
            result["blocks"] = blocks
        if links:
            result["links"] = [{"id": record_id} for record_id in links]
        return result

    def _normalize_node(self, node: Dict[str, Any], field: FieldDefinition, pool: Dict[str, Dict[str, Any]],
                        blocks: List[Dict[str, Any]], links: List[str],
                        parent: Optional[NodeType]) -> Dict[str, Any]:
        kind = node_type(node)
        if self.strict and parent == NodeType.ROOT and kind not in ROOT_CHILD_TYPES:
            raise RepositoryError(f"'{kind.value}' nodes cannot be direct children of root", 422)
        normalized = dict(node)
        if kind in BLOCK_NODE_TYPES:
            item = node.get("item")
            if isinstance(item, str):
                if item not in pool:
                    raise RepositoryError(f"Block node references unknown block {item}", 422)
                item = pool[item]
            block = self._normalize_block(item, pool, field)
            blocks.append(block)
            normalized["item"] = block["id"]
        elif kind in RECORD_NODE_TYPES:
            record_id = node_item_id(node)
            if record_id not in links:
                links.append(record_id)
            normalized["item"] = record_id
        if "children" in node:
            normalized["children"] = [
                self._normalize_node(child, field, pool, blocks, links, kind) for child in node["children"]
            ]
        return normalized

    # Project

    def list_locales(self) -> List[str]:
        return list(self.locales)


def _link_id(value: Any) -> str:
    if isinstance(value, dict):
        return value["id"]
    return value


def _collapse(field: FieldDefinition, value: Any) -> Any:
    """Reduce expanded blocks to ids, as non-nested reads return them."""
    if field.field_type == "rich_text":
        return [get_block_id(b) for b in value or []]
    if field.field_type == "single_block":
        return get_block_id(value) if value else None
    if field.field_type == "structured_text" and value and "blocks" in value:
        return {**value, "blocks": [get_block_id(b) for b in value["blocks"]]}
    return value


def _without_type(validators: Dict[str, Any], type_id: str) -> Dict[str, Any]:
    cleaned = copy.deepcopy(validators)
    for validator in cleaned.values():
        if isinstance(validator, dict) and isinstance(validator.get("item_types"), list):
            validator["item_types"] = [t for t in validator["item_types"] if t != type_id]
    return cleaned
