"""
Schema and record builders shared by the test suite.
"""

from typing import Any, Dict, List, Optional

from blocklift.config import ConversionOptions
from blocklift.models import ContainerKind, FieldDefinition, TypeDefinition
from blocklift.models.blocks import make_block
from blocklift.repository import InMemoryRepository


def fast_options(**overrides: Any) -> ConversionOptions:
    """Conversion options without pauses between batches and schema calls."""
    values = {"batch_delay": 0.0, "field_delay": 0.0}
    values.update(overrides)
    return ConversionOptions(**values)


def add_block_type(repo: InMemoryRepository, api_key: str, name: Optional[str] = None) -> TypeDefinition:
    return repo.create_type({"name": name or api_key.replace("_", " ").title(), "api_key": api_key,
                             "modular_block": True})


def add_model(repo: InMemoryRepository, api_key: str, name: Optional[str] = None) -> TypeDefinition:
    return repo.create_type({"name": name or api_key.replace("_", " ").title(), "api_key": api_key})


def add_string_field(repo: InMemoryRepository, type_id: str, api_key: str,
                     localized: bool = False, **extra: Any) -> FieldDefinition:
    return repo.create_field(type_id, {
        "label": api_key.title(),
        "api_key": api_key,
        "field_type": extra.pop("field_type", "string"),
        "localized": localized,
        **extra,
    })


def add_container_field(repo: InMemoryRepository, type_id: str, api_key: str, kind: ContainerKind,
                        allowed: List[str], localized: bool = False, **extra: Any) -> FieldDefinition:
    return repo.create_field(type_id, {
        "label": api_key.title(),
        "api_key": api_key,
        "field_type": kind.value,
        "localized": localized,
        "validators": {kind.validator_key: {"item_types": list(allowed)}},
        **extra,
    })


def block(type_id: str, **attributes: Any) -> Dict[str, Any]:
    """A new block payload (no id yet)."""
    return make_block(type_id, attributes)


def document(*children: Dict[str, Any]) -> Dict[str, Any]:
    return {"schema": "dast", "document": {"type": "root", "children": list(children)}}


def text(value: str) -> Dict[str, Any]:
    return {"type": "paragraph", "children": [{"type": "span", "value": value}]}


def block_node(item: Any) -> Dict[str, Any]:
    return {"type": "block", "item": item}


def records_of(repo: InMemoryRepository, type_id: str) -> List[Dict[str, Any]]:
    return list(repo.iter_records(type_id, nested=True))


def field_by_key(repo: InMemoryRepository, type_id: str, api_key: str) -> FieldDefinition:
    field = repo.find_field_by_key(type_id, api_key)
    assert field is not None, f"{api_key} not found"
    return field


def page_with_sections(locales: Optional[List[str]] = None, localized: bool = False):
    """
    A "page" model whose "sections" modular content field allows one "cta" block type.

    Returns:
        (repository, page type, cta block type)
    """
    repo = InMemoryRepository(locales=locales or ["en"])
    cta = add_block_type(repo, "cta", "Call to action")
    add_string_field(repo, cta.id, "title")
    add_string_field(repo, cta.id, "url")
    page = add_model(repo, "pages", "Page")
    add_string_field(repo, page.id, "name")
    add_container_field(repo, page.id, "sections", ContainerKind.RICH_TEXT, [cta.id], localized=localized)
    return repo, page, cta
