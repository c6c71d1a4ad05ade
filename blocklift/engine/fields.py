"""
Field conversion for Blocklift.

Moves every field that embedded the converted block type over to references
to the new standalone records, without ever leaving a field in a state the
repository would reject:

- list/single containers either get a companion links/link field (when other
  block types remain allowed, or deletions are disabled) or are replaced by a
  links/link field that takes over their key and position;
- structured text fields keep their kind and go through three ordered
  validator/data phases.
"""

import copy
import logging
import time
from typing import Any, Dict, List, Optional

from ..config import ConversionOptions, ReplacementPolicy
from ..database import DatabaseManager
from ..errors import RepositoryError
from ..models import ContainerKind, FieldDefinition, FieldUsage, NestedPath, instance_key
from ..models.blocks import get_block_id, get_block_type_id
from ..models.schema import LINK_VALIDATOR, LINKS_VALIDATOR, STRUCTURED_TEXT_LINKS_VALIDATOR
from ..repository import ContentRepository
from .document import RichDocumentTransformer
from .locale import complete_localized_update
from .locator import extract_blocks
from .mapper import MigrationMapping
from .nested import as_references, strip_block_type, update_holders

# Strategies the repository requires on a structured text links validator
DEFAULT_LINK_STRATEGIES = {
    "on_publish_with_unpublished_references_strategy": "fail",
    "on_reference_unpublish_strategy": "delete_references",
    "on_reference_delete_strategy": "delete_references",
}


def companion_key(field: FieldDefinition) -> str:
    """Key of the links field kept next to a partially converted container."""
    suffix = "link" if field.container_kind == ContainerKind.SINGLE_BLOCK else "links"
    return f"{field.api_key}_{suffix}"


def temporary_key(field: FieldDefinition) -> str:
    """Key of the field used while a container is fully replaced."""
    suffix = "link" if field.container_kind == ContainerKind.SINGLE_BLOCK else "links"
    return f"{field.api_key}_temp_{suffix}"


def empty_value(kind: str) -> Any:
    """Empty value of a field type, used to fill locales without data."""
    return [] if kind in ("rich_text", "links") else None


class FieldConversionEngine:
    """
    Converts the referencing fields of one block type.

    Args:
        repository: Content repository to mutate
        options: Conversion options
        mapping: Instance-to-record mapping, fully built before any field is converted
        block_type_id: The block type being converted
        destination_type_id: The standalone type replacing it
        locales: The project's locales
        state: Optional store for per-record failures
    """

    def __init__(self, repository: ContentRepository, options: ConversionOptions, mapping: MigrationMapping,
                 block_type_id: str, destination_type_id: str, locales: List[str],
                 state: Optional[DatabaseManager] = None):
        self.repository = repository
        self.options = options
        self.mapping = mapping
        self.block_type_id = block_type_id
        self.destination_type_id = destination_type_id
        self.locales = locales
        self.state = state
        self.updated_records = 0
        self.failed_records = 0

    def convert(self, usage: FieldUsage, paths: List[NestedPath]) -> None:
        """
        Convert one referencing field, migrating its data along every path that ends in it.

        Args:
            usage: The referencing field
            paths: All nested paths of the run; only those ending in usage are used
        """
        field = self.repository.find_field(usage.id)
        field_paths = [path for path in paths if path.usage.id == usage.id]
        logging.info(f"Converting field {usage.qualified_name} ({field.field_type}, {len(field_paths)} paths)")

        if field.container_kind == ContainerKind.STRUCTURED_TEXT:
            self._convert_structured_text(field, field_paths)
        else:
            self._convert_container(field, field_paths)

    # List and single containers

    def _convert_container(self, field: FieldDefinition, paths: List[NestedPath]) -> None:
        remaining = [type_id for type_id in field.allowed_block_ids() if type_id != self.block_type_id]
        companion = self.repository.find_field_by_key(field.item_type_id, companion_key(field))

        if companion is None and not remaining and not self.options.skip_deletions:
            self._replace_field(field, paths)
            return

        if companion is None:
            companion = self._create_link_field(field, companion_key(field), self._companion_label(field),
                                                position=field.position + 1)
        else:
            logging.info(f"Reusing companion field {companion.api_key}")
            companion = self._allow_destination(companion)

        strip = bool(remaining) and not self.options.skip_deletions
        self._migrate_links(field, companion.api_key, paths, append=True, strip=strip)

        if self.options.skip_deletions:
            logging.warning(f"Deletions disabled, {field.api_key} keeps its blocks and validators")
            return

        if remaining:
            validators = copy.deepcopy(field.validators)
            validators[field.container_kind.validator_key] = {
                **validators.get(field.container_kind.validator_key, {}),
                "item_types": remaining,
            }
            self.repository.update_field(field.id, {"validators": validators})
            logging.info(f"{field.api_key} now allows only {remaining}")
            return

        # Every allowed type is converted: the companion takes the original's place
        self._pause()
        self.repository.destroy_field(field.id)
        self._take_place_of(companion, field)

    def _replace_field(self, field: FieldDefinition, paths: List[NestedPath]) -> None:
        """Create a temporary links field, migrate, destroy the original, rename the temporary one."""
        temp_key = temporary_key(field)
        stale = self.repository.find_field_by_key(field.item_type_id, temp_key)
        if stale is not None:
            logging.warning(f"Removing leftover temporary field {temp_key}")
            self.repository.destroy_field(stale.id)

        temp = self._create_link_field(field, temp_key, f"{field.label} (converting)")
        self._migrate_links(field, temp.api_key, paths, append=False, strip=False)

        self._pause()
        self.repository.destroy_field(field.id)
        self._take_place_of(temp, field)

    def _take_place_of(self, replacement: FieldDefinition, original: FieldDefinition) -> None:
        self.repository.update_field(replacement.id, {
            "label": original.label,
            "api_key": original.api_key,
            "position": original.position,
            "hint": original.hint,
            "fieldset": original.fieldset,
        })
        logging.info(f"Field {original.api_key} now links to {self.destination_type_id}")

    def _companion_label(self, field: FieldDefinition) -> str:
        return f"{field.label} (link)" if field.container_kind == ContainerKind.SINGLE_BLOCK \
            else f"{field.label} (links)"

    def _create_link_field(self, field: FieldDefinition, api_key: str, label: str,
                           position: Optional[int] = None) -> FieldDefinition:
        single = field.container_kind == ContainerKind.SINGLE_BLOCK
        validator = LINK_VALIDATOR if single else LINKS_VALIDATOR
        attributes: Dict[str, Any] = {
            "label": label,
            "api_key": api_key,
            "field_type": "link" if single else "links",
            "localized": field.localized,
            "validators": {validator: {"item_types": [self.destination_type_id]}},
            "hint": field.hint,
            "fieldset": field.fieldset,
        }
        if position is not None:
            attributes["position"] = position
        created = self.repository.create_field(field.item_type_id, attributes)
        logging.info(f"Created field {api_key} linking to {self.destination_type_id}")
        return created

    def _allow_destination(self, link_field: FieldDefinition) -> FieldDefinition:
        validator = LINK_VALIDATOR if link_field.field_type == "link" else LINKS_VALIDATOR
        allowed = link_field.allowed_link_ids()
        if self.destination_type_id in allowed:
            return link_field
        validators = copy.deepcopy(link_field.validators)
        validators[validator] = {**validators.get(validator, {}), "item_types": allowed + [self.destination_type_id]}
        return self.repository.update_field(link_field.id, {"validators": validators})

    def _migrate_links(self, field: FieldDefinition, link_key: str, paths: List[NestedPath],
                       append: bool, strip: bool) -> None:
        """
        Fill link_key with the records mapped from field's target blocks, in every holder along paths.

        Args:
            field: The container field being converted
            link_key: Links/link field next to it
            paths: Paths ending in field
            append: Keep references already present in link_key
            strip: Remove the target blocks from field in the same write
        """
        kind = field.container_kind
        single = kind == ContainerKind.SINGLE_BLOCK

        for path in paths:
            for record in self.repository.iter_records(path.root_type_id, nested=True):
                def update(holder: Dict[str, Any], locale: Optional[str], trail: List[int]) -> Optional[Dict[str, Any]]:
                    value = holder.get(field.api_key)
                    existing = holder.get(link_key)
                    if field.localized and isinstance(value, dict):
                        links: Dict[str, Any] = {}
                        stripped: Dict[str, Any] = {}
                        for loc, loc_value in value.items():
                            found = self._mapped_records(record["id"], loc_value, kind, trail, loc, path.scope)
                            if found:
                                current = (existing or {}).get(loc)
                                links[loc] = self._link_value(found, current if append else None, single)
                                stripped[loc] = strip_block_type(loc_value, kind, self.block_type_id)
                        if not links:
                            return None
                        empty = empty_value(field.field_type)
                        changes = {link_key: complete_localized_update(
                            links, existing, self.locales, empty_value("link" if single else "links"))}
                        if strip:
                            unchanged = {loc: as_references(v, kind) for loc, v in value.items()}
                            changes[field.api_key] = complete_localized_update(stripped, unchanged, self.locales, empty)
                        return changes

                    found = self._mapped_records(record["id"], value, kind, trail, locale, path.scope)
                    if not found:
                        return None
                    changes = {link_key: self._link_value(found, existing if append else None, single)}
                    if strip:
                        changes[field.api_key] = strip_block_type(value, kind, self.block_type_id)
                    return changes

                self._write(record, path, update, field.api_key)

    def _mapped_records(self, record_id: str, value: Any, kind: ContainerKind,
                        trail: List[int], locale: Optional[str], scope: str) -> List[str]:
        """Record ids mapped from the target blocks of one (per-locale) container value, in order."""
        found: List[str] = []
        for index, block in enumerate(extract_blocks(value, kind)):
            if not isinstance(block, dict) or get_block_type_id(block) != self.block_type_id:
                continue
            slot = instance_key(record_id, trail + [index], scope)
            block_id = get_block_id(block) or (f"{slot}_{locale}" if locale else slot)
            mapped = self.mapping.lookup(block_id, slot)
            if mapped is None:
                logging.warning(f"No record mapped for block {block_id} in record {record_id}")
            elif mapped not in found:
                found.append(mapped)
        return found

    @staticmethod
    def _link_value(found: List[str], current: Any, single: bool) -> Any:
        if single:
            return current or found[0]
        links = [link if isinstance(link, str) else link["id"] for link in current or []]
        links.extend(record_id for record_id in found if record_id not in links)
        return links

    # Structured text

    def _convert_structured_text(self, field: FieldDefinition, paths: List[NestedPath]) -> None:
        # Deletions disabled means nothing may be removed from documents
        policy = ReplacementPolicy.AUGMENT if self.options.skip_deletions else self.options.replacement_policy

        # Phase 1: allow links to the destination while the block type stays allowed
        validators = copy.deepcopy(field.validators)
        links_validator = validators.get(STRUCTURED_TEXT_LINKS_VALIDATOR)
        allowed_links = list((links_validator or {}).get("item_types") or [])
        if self.destination_type_id not in allowed_links:
            validators[STRUCTURED_TEXT_LINKS_VALIDATOR] = {
                **(links_validator or DEFAULT_LINK_STRATEGIES),
                "item_types": allowed_links + [self.destination_type_id],
            }
            field = self.repository.update_field(field.id, {"validators": validators})
            logging.info(f"{field.api_key} now accepts links to {self.destination_type_id}")

        # Phase 2: rewrite the documents
        transformer = RichDocumentTransformer(self.block_type_id, self.mapping, policy)
        for path in paths:
            for record in self.repository.iter_records(path.root_type_id, nested=True):
                def update(holder: Dict[str, Any], locale: Optional[str], trail: List[int]) -> Optional[Dict[str, Any]]:
                    value = holder.get(field.api_key)
                    if field.localized and isinstance(value, dict) and "document" not in value:
                        rewritten = {}
                        for loc, loc_value in value.items():
                            new_value = transformer.transform(loc_value)
                            if new_value is not None:
                                rewritten[loc] = new_value
                        if not rewritten:
                            return None
                        return {field.api_key: complete_localized_update(rewritten, value, self.locales)}
                    new_value = transformer.transform(value)
                    return None if new_value is None else {field.api_key: new_value}

                self._write(record, path, update, field.api_key)

        if policy == ReplacementPolicy.AUGMENT:
            logging.info(f"Augment mode: {field.api_key} keeps the block type alongside the links")
            return

        # Phase 3: no document references the block type any more
        validators = copy.deepcopy(field.validators)
        blocks_key = ContainerKind.STRUCTURED_TEXT.validator_key
        remaining = [type_id for type_id in field.allowed_block_ids() if type_id != self.block_type_id]
        validators[blocks_key] = {**validators.get(blocks_key, {}), "item_types": remaining}
        self.repository.update_field(field.id, {"validators": validators})
        logging.info(f"Removed {self.block_type_id} from the blocks allowed in {field.api_key}")

    # Writes

    def _write(self, record: Dict[str, Any], path: NestedPath, update, field_api_key: str) -> None:
        """Apply update to the holders of one record and write the changed top-level fields."""
        changes = update_holders(record, path.steps[:-1], update)
        if not changes:
            return

        if len(path.steps) > 1 and path.steps[0].localized:
            root_key = path.steps[0].field_api_key
            changes[root_key] = complete_localized_update(
                changes[root_key], record.get(root_key), self.locales, empty_value(path.steps[0].field_kind.value)
            )

        try:
            self.repository.update_record(record["id"], changes)
            self.updated_records += 1
            if self.options.verbose:
                logging.info(f"Updated record {record['id']} ({path.describe()}): {sorted(changes)}")
        except RepositoryError as e:
            self.failed_records += 1
            logging.error(f"Skipping record {record['id']} ({path.describe()}): {e}")
            if self.state is not None:
                self.state.record_failure(self.block_type_id, record["id"], "update_record", str(e), field_api_key)

    def _pause(self) -> None:
        if self.options.field_delay:
            time.sleep(self.options.field_delay)
