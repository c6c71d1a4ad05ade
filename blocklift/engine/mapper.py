"""
Record creation and the block-to-record mapping for Blocklift.

Every embedded instance (and every synthetic group key) is turned into one
standalone record of the destination type. The mapping from instance id to
record id is append-only; with a DatabaseManager attached it survives
interrupted runs, so re-running a conversion into the same model skips
instances already created.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Set

from ..config import ConversionOptions
from ..database import DatabaseManager
from ..errors import MigrationError, RepositoryError
from ..models import BlockInstance, GroupedInstance
from ..models.blocks import get_block_attributes, get_block_type_id, is_block_record, make_block
from ..models.document import is_structured_text_value
from ..repository import ContentRepository
from .batching import process_batch
from .document import inline_blocks_for_creation
from .locale import merge_locale_data, wrap_fields_in_localized_hash


def sanitize_block_for_creation(block: Dict[str, Any]) -> Dict[str, Any]:
    """
    Turn an existing block into a payload that creates a new block.

    The id is dropped and nested blocks are rewritten the same way.
    """
    attributes = {key: sanitize_value_for_creation(value) for key, value in get_block_attributes(block).items()}
    return make_block(get_block_type_id(block), attributes)


def sanitize_value_for_creation(value: Any) -> Any:
    if is_block_record(value):
        return sanitize_block_for_creation(value)
    if is_structured_text_value(value):
        return inline_blocks_for_creation(value, sanitize_block_for_creation)
    if isinstance(value, list):
        return [sanitize_value_for_creation(item) for item in value]
    if isinstance(value, dict):
        return {key: sanitize_value_for_creation(item) for key, item in value.items()}
    return value


def sanitize_fields_for_creation(data: Dict[str, Any]) -> Dict[str, Any]:
    """Field values of a block, ready to be written into a brand new record."""
    return {key: sanitize_value_for_creation(value) for key, value in data.items()}


class MigrationMapping:
    """
    Instance id (or synthetic key) to created record id, for one block type.

    Args:
        block_type_id: The block type being converted
        store: Optional database used to persist and resume the mapping
        destination_type_id: The model records are created in; stored mappings
            to any other model are not loaded
    """

    def __init__(self, block_type_id: str, store: Optional[DatabaseManager] = None,
                 destination_type_id: str = ""):
        self.block_type_id = block_type_id
        self.destination_type_id = destination_type_id
        self.store = store
        self._entries: Dict[str, str] = {}
        self._lock = threading.Lock()
        if store is not None:
            self._entries.update(store.load_mappings(block_type_id, destination_type_id))
            if self._entries:
                logging.info(f"Resuming with {len(self._entries)} stored mappings for {block_type_id}")

    def get(self, key: str) -> Optional[str]:
        return self._entries.get(key)

    def lookup(self, block_id: Optional[str], slot_key: str) -> Optional[str]:
        """Record for an occurrence: by its own id first, then by its structural slot."""
        if block_id and block_id in self._entries:
            return self._entries[block_id]
        return self._entries.get(slot_key)

    def add(self, key: str, record_id: str) -> None:
        """
        Register key -> record_id.

        Raises:
            MigrationError: If key is already mapped to a different record
        """
        with self._lock:
            current = self._entries.get(key)
            if current == record_id:
                return
            if current is not None:
                raise MigrationError(f"Instance {key} is already mapped to record {current}")
            self._entries[key] = record_id
            if self.store is not None:
                self.store.save_mapping(self.block_type_id, key, record_id, self.destination_type_id)

    def retain(self, existing_record_ids: Set[str]) -> int:
        """
        Drop entries whose record is not among existing_record_ids, so their instances are migrated again.

        Returns:
            Number of entries dropped
        """
        with self._lock:
            stale = [key for key, record_id in self._entries.items() if record_id not in existing_record_ids]
            for key in stale:
                del self._entries[key]
            if stale and self.store is not None:
                self.store.forget_mappings(self.block_type_id, self.destination_type_id, stale)
        if stale:
            logging.warning(f"Dropped {len(stale)} stored mappings to records that no longer exist")
        return len(stale)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def record_ids(self) -> Set[str]:
        """Distinct records created so far."""
        return set(self._entries.values())


class MigrationMapper:
    """
    Creates standalone records from block instances.

    Args:
        repository: Content repository to write to
        options: Conversion options (batching and fallback locale)
        locales: The project's locales
    """

    def __init__(self, repository: ContentRepository, options: ConversionOptions, locales: List[str]):
        self.repository = repository
        self.options = options
        self.locales = locales

    def migrate_instances(self, instances: List[BlockInstance], destination_type_id: str,
                          mapping: MigrationMapping, force_localized: bool = False) -> int:
        """
        Create one record per instance not yet in the mapping.

        Args:
            instances: Occurrences read along a non-localized path
            destination_type_id: Type to create records of
            mapping: Mapping to register created records in
            force_localized: Duplicate each value across all locales, for localized destinations

        Returns:
            Number of records created
        """
        pending: Dict[str, BlockInstance] = {}
        for instance in instances:
            if instance.instance_id not in mapping and instance.instance_id not in pending:
                pending[instance.instance_id] = instance

        skipped = len(instances) - len(pending)
        if skipped:
            logging.info(f"Skipping {skipped} instances that already have records")

        def create(instance: BlockInstance) -> str:
            data = sanitize_fields_for_creation(instance.data)
            if force_localized:
                data = wrap_fields_in_localized_hash(data, self.locales)
            record = self._create(destination_type_id, data, instance.instance_id)
            mapping.add(instance.instance_id, record["id"])
            return record["id"]

        created = process_batch(list(pending.values()), self.options.batch_size, create, self.options.batch_delay)
        logging.info(f"Created {len(created)} records of {destination_type_id}")
        return len(created)

    def migrate_groups(self, groups: List[GroupedInstance], destination_type_id: str,
                       mapping: MigrationMapping) -> int:
        """
        Create one localized record per group, registering it under every key of the group.

        Groups whose instances already have a record reuse it.

        Returns:
            Number of records created
        """
        pending: List[GroupedInstance] = []
        for group in groups:
            existing = next((mapping.get(key) for key in group.instance_ids if key in mapping), None)
            if existing is None:
                pending.append(group)
                continue
            for key in group.all_keys:
                mapping.add(key, existing)

        def create(group: GroupedInstance) -> str:
            merged = merge_locale_data(group.locale_data, self.locales, self.options.fallback_locale)
            data = {
                key: {locale: sanitize_value_for_creation(value) for locale, value in per_locale.items()}
                for key, per_locale in merged.items()
            }
            record = self._create(destination_type_id, data, group.reference_id)
            for key in group.all_keys:
                mapping.add(key, record["id"])
            return record["id"]

        created = process_batch(pending, self.options.batch_size, create, self.options.batch_delay)
        logging.info(f"Created {len(created)} localized records of {destination_type_id}")
        return len(created)

    def _create(self, type_id: str, data: Dict[str, Any], source: str) -> Dict[str, Any]:
        try:
            record = self.repository.create_record(type_id, data)
        except RepositoryError as e:
            raise MigrationError(f"Failed to create a record for block {source}: {e}") from e
        if self.options.verbose:
            logging.info(f"Created record {record['id']} from block {source} with fields {sorted(data)}")
        return record
