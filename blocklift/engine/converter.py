"""
Block-to-model conversion pipeline for Blocklift.

BlockConverter drives the whole conversion of one embeddable type:
analysis, creation of the standalone type, record migration along every
nested path, field conversion and the optional removal of the original
block type.
"""

import logging
from typing import Callable, Dict, List, Optional, Set

from ..config import ConversionOptions
from ..database import DatabaseManager
from ..errors import DiscoveryError, RepositoryError
from ..models import BlockAnalysis, ConversionProgress, ConversionResult, RenameResult, TypeDefinition
from ..repository import ContentRepository
from .builder import StandaloneTypeBuilder, sanitize_api_key
from .fields import FieldConversionEngine
from .locator import InstanceLocator
from .mapper import MigrationMapper, MigrationMapping
from .resolver import SchemaCache, SchemaPathResolver, describe_kind

ProgressCallback = Callable[[ConversionProgress], None]

TOTAL_STEPS = 6


class BlockConverter:
    """
    Converts an embeddable block type into a standalone model.

    Args:
        repository: Content repository to read and mutate
        options: Conversion options (defaults apply when omitted)
        state: Optional DuckDB store for mappings and record failures
    """

    def __init__(self, repository: ContentRepository, options: Optional[ConversionOptions] = None,
                 state: Optional[DatabaseManager] = None):
        self.repository = repository
        self.options = options or ConversionOptions()
        self.state = state

    def analyze(self, block_id: str) -> BlockAnalysis:
        """
        Describe a block type and everything that embeds it, without changing anything.

        Args:
            block_id: Id or api_key of the embeddable type

        Returns:
            BlockAnalysis with fields, referencing fields, nested paths and affected record count

        Raises:
            DiscoveryError: If the type is not an embeddable block
        """
        cache = SchemaCache(self.repository)
        resolver = SchemaPathResolver(self.repository, cache)

        block = cache.find_type(block_id)
        if not block.modular_block:
            raise DiscoveryError(f"Item type {block.api_key} is not a block model")

        usages = resolver.find_usages(block.id)
        paths = resolver.resolve(block.id, usages)

        locator = InstanceLocator(self.repository)
        affected: Set[str] = set()
        for path in paths:
            affected |= locator.affected_record_ids(path, block.id)

        analysis = BlockAnalysis(
            source_type=block,
            fields=cache.fields(block.id),
            referencing_fields=usages,
            nested_paths=paths,
            total_affected_records=len(affected),
        )
        logging.info(
            f"Block {block.api_key}: {len(analysis.fields)} fields, {len(usages)} referencing fields, "
            f"{len(paths)} paths, {len(affected)} affected records"
        )
        return analysis

    def convert(self, block_id: str, on_progress: Optional[ProgressCallback] = None) -> ConversionResult:
        """
        Convert a block type into a standalone model and rewrite every field that embedded it.

        Fatal errors are logged and reported in the result; records that fail
        to update are skipped and only logged (and stored when state is enabled).

        Args:
            block_id: Id or api_key of the embeddable type
            on_progress: Called with a ConversionProgress at each step

        Returns:
            ConversionResult
        """
        try:
            return self._convert(block_id, on_progress)
        except Exception as e:
            logging.error(f"Conversion of {block_id} failed: {e}")
            return ConversionResult(success=False, error=str(e))

    def _convert(self, block_id: str, on_progress: Optional[ProgressCallback]) -> ConversionResult:
        self._report(on_progress, 1, "Analyzing block structure", 5)
        analysis = self.analyze(block_id)
        block = analysis.source_type
        if not analysis.referencing_fields:
            raise DiscoveryError(f"Block {block.api_key} is not used by any field")

        locales = self.repository.list_locales()
        localized = analysis.is_in_localized_context

        self._report(on_progress, 2, "Creating new model", 15, f"Copying {len(analysis.fields)} fields")
        new_type = self._destination_model(analysis, localized)

        mapping = MigrationMapping(block.id, self.state, new_type.id)
        if len(mapping):
            mapping.retain({r["id"] for r in self.repository.iter_records(new_type.id, nested=False)})
        self._migrate_records(analysis, new_type, mapping, locales, on_progress)

        engine = FieldConversionEngine(
            self.repository, self.options, mapping, block.id, new_type.id, locales, self.state
        )
        usages = analysis.referencing_fields
        for index, usage in enumerate(usages):
            self._report(on_progress, 4, f"Converting field {usage.qualified_name}",
                         55 + 15 * index / len(usages), describe_kind(usage.kind))
            engine.convert(usage, analysis.nested_paths)
        if engine.failed_records:
            logging.warning(f"{engine.failed_records} record updates failed and were skipped")

        if self.options.deletes_original_type:
            self._report(on_progress, 5, "Deleting original block", 90, block.api_key)
            self.delete_original_block(block.id)
            if self.options.rename_to_original:
                rename = self.rename_model_to_original(new_type.id, block.name, block.api_key)
                if rename.error:
                    logging.warning(f"Rename of {new_type.api_key} incomplete: {rename.error}")
                new_type = self.repository.find_type(new_type.id)
        elif self.options.fully_replace:
            logging.warning(f"Keeping block {block.api_key}: deletion needs the replace policy without skip_deletions")

        if self.state is not None:
            self.state.complete_conversion(block.id)

        self._report(on_progress, TOTAL_STEPS, "Conversion complete", 100)
        return ConversionResult(
            success=True,
            destination_type_id=new_type.id,
            destination_type_key=new_type.api_key,
            migrated_record_count=len(mapping.record_ids()),
            converted_field_count=len(usages),
            original_block_name=block.name,
            original_block_api_key=block.api_key,
        )

    def _destination_model(self, analysis: BlockAnalysis, localized: bool) -> TypeDefinition:
        """The model of an interrupted earlier run when it still exists, otherwise a new one."""
        block = analysis.source_type
        if self.state is not None:
            pending = self.state.get_pending_destination(block.id)
            if pending is not None:
                try:
                    existing = self.repository.find_type(pending)
                    logging.info(f"Resuming conversion of {block.api_key} into {existing.api_key}")
                    return existing
                except RepositoryError as e:
                    logging.warning(f"Model {pending} of an interrupted conversion is gone, creating a new one: {e}")

        new_type = StandaloneTypeBuilder(self.repository, self.options).build(
            block, analysis.fields, force_localized=localized
        )
        if self.state is not None:
            self.state.start_conversion(block.id, new_type.id)
        return new_type

    def _migrate_records(self, analysis: BlockAnalysis, new_type: TypeDefinition, mapping: MigrationMapping,
                         locales: List[str], on_progress: Optional[ProgressCallback]) -> None:
        block = analysis.source_type
        mapper = MigrationMapper(self.repository, self.options, locales)
        locator = InstanceLocator(self.repository)
        paths = analysis.nested_paths

        for index, path in enumerate(paths):
            self._report(on_progress, 3, "Migrating block instances", 30 + 20 * index / len(paths),
                         path.describe())
            if path.is_in_localized_context:
                groups = locator.find_grouped_instances(path, block.id)
                mapper.migrate_groups(groups, new_type.id, mapping)
            else:
                instances = locator.find_instances(path, block.id)
                mapper.migrate_instances(instances, new_type.id, mapping,
                                         force_localized=analysis.is_in_localized_context)
        logging.info(f"Mapping holds {len(mapping)} entries for {len(mapping.record_ids())} records")

    def delete_original_block(self, block_id: str) -> None:
        """Destroy the original block type."""
        self.repository.destroy_type(block_id)
        logging.info(f"Deleted block type {block_id}")

    def rename_model_to_original(self, type_id: str, original_name: str, original_api_key: str) -> RenameResult:
        """
        Give the converted model the name and api_key of the deleted block.

        Tries the original key, then its plural form; if both are refused
        only the name is changed and the result carries the reason.

        Returns:
            RenameResult
        """
        target = sanitize_api_key(original_api_key)
        candidates = [target] if target.endswith("s") else [target, target + "s"]

        errors: List[str] = []
        for api_key in candidates:
            try:
                updated = self.repository.update_type(type_id, {"name": original_name, "api_key": api_key})
                logging.info(f"Renamed model to {updated.name} ({updated.api_key})")
                return RenameResult(success=True, new_name=updated.name, new_api_key=updated.api_key)
            except RepositoryError as e:
                logging.warning(f"Could not use api_key '{api_key}': {e}")
                errors.append(str(e))

        try:
            updated = self.repository.update_type(type_id, {"name": original_name})
        except RepositoryError as e:
            logging.error(f"Could not rename model {type_id}: {e}")
            return RenameResult(success=False, error=str(e))
        return RenameResult(
            success=True,
            new_name=updated.name,
            new_api_key=updated.api_key,
            error=f"Could not update api_key to '{target}', kept '{updated.api_key}': {errors[-1]}",
        )

    def _report(self, callback: Optional[ProgressCallback], step: int, description: str,
                percentage: float, details: Optional[str] = None) -> None:
        logging.info(f"[{step}/{TOTAL_STEPS}] {description}" + (f": {details}" if details else ""))
        if callback is not None:
            callback(ConversionProgress(
                current_step=step,
                total_steps=TOTAL_STEPS,
                description=description,
                percentage=round(percentage, 1),
                details=details,
            ))


def list_block_types(repository: ContentRepository) -> List[Dict[str, str]]:
    """Id, name and api_key of every embeddable type."""
    return [
        {"id": t.id, "name": t.name, "api_key": t.api_key}
        for t in repository.list_types() if t.modular_block
    ]
