"""
Schema path resolution for Blocklift.

Finds every container field that allows a block type and every route of
field hops from a top-level type down to those fields, across any depth of
blocks nested in blocks.
"""

import logging
from typing import Dict, FrozenSet, List, Optional, Tuple

from ..errors import DiscoveryError
from ..models import ContainerKind, FieldDefinition, FieldUsage, NestedPath, PathStep, TypeDefinition
from ..repository import ContentRepository


class SchemaCache:
    """
    Type and field lookups memoized for one analysis run.

    Create a new cache for each run; nothing is shared between runs.
    """

    def __init__(self, repository: ContentRepository):
        self.repository = repository
        self._types: Optional[List[TypeDefinition]] = None
        self._fields: Dict[str, List[FieldDefinition]] = {}

    def types(self) -> List[TypeDefinition]:
        if self._types is None:
            self._types = self.repository.list_types()
        return self._types

    def fields(self, type_id: str) -> List[FieldDefinition]:
        if type_id not in self._fields:
            self._fields[type_id] = self.repository.list_fields(type_id)
        return self._fields[type_id]

    def find_type(self, type_id: str) -> TypeDefinition:
        for type_def in self.types():
            if type_def.id == type_id or type_def.api_key == type_id:
                return type_def
        return self.repository.find_type(type_id)

    def containers_allowing(self, block_id: str) -> List[Tuple[TypeDefinition, FieldDefinition]]:
        """Every (type, container field) pair whose validator allows block_id."""
        found = []
        for type_def in self.types():
            for field in self.fields(type_def.id):
                if field.container_kind is not None and block_id in field.allowed_block_ids():
                    found.append((type_def, field))
        return found


class SchemaPathResolver:
    """
    Discovers the NestedPaths leading to a target block type.

    Args:
        repository: Content repository to read the schema from
        cache: Per-run lookup cache (a fresh one is created when omitted)
    """

    def __init__(self, repository: ContentRepository, cache: Optional[SchemaCache] = None):
        self.cache = cache or SchemaCache(repository)

    def find_usages(self, block_id: str) -> List[FieldUsage]:
        """
        Find all container fields (on top-level types or on other blocks) allowing block_id.

        Args:
            block_id: The embeddable type

        Returns:
            One FieldUsage per referencing field
        """
        return [FieldUsage.from_field(field, parent) for parent, field in self.cache.containers_allowing(block_id)]

    def resolve(self, block_id: str, usages: Optional[List[FieldUsage]] = None) -> List[NestedPath]:
        """
        Build every NestedPath from a top-level type to the fields holding block_id.

        Args:
            block_id: The embeddable type
            usages: Referencing fields, when already discovered

        Returns:
            One NestedPath per (root type, route, referencing field)

        Raises:
            DiscoveryError: If block_id is not an embeddable type
        """
        target = self.cache.find_type(block_id)
        if not target.modular_block:
            raise DiscoveryError(f"Item type {target.api_key} is not a block model")

        if usages is None:
            usages = self.find_usages(target.id)

        paths: List[NestedPath] = []
        for usage in usages:
            final_step = PathStep(
                field_api_key=usage.api_key,
                expected_block_type_id=target.id,
                localized=usage.localized,
                field_kind=usage.kind,
            )
            if not usage.parent_is_block:
                paths.append(NestedPath(
                    root_type_id=usage.parent_type_id,
                    root_type_name=usage.parent_type_name,
                    root_type_api_key=usage.parent_type_api_key,
                    steps=(final_step,),
                    usage=usage,
                ))
                continue

            routes = self._paths_to_block(usage.parent_type_id, frozenset())
            if not routes:
                logging.info(f"{usage.qualified_name} is not reachable from any model, skipping")
            for root, steps in routes:
                paths.append(NestedPath(
                    root_type_id=root.id,
                    root_type_name=root.name,
                    root_type_api_key=root.api_key,
                    steps=steps + (final_step,),
                    usage=usage,
                ))

        for path in paths:
            logging.info(f"Found path {path.describe()} (localized: {path.is_in_localized_context})")
        return paths

    def _paths_to_block(self, block_id: str,
                        visited: FrozenSet[str]) -> List[Tuple[TypeDefinition, Tuple[PathStep, ...]]]:
        """
        Routes from top-level types down to the fields that hold block_id.

        visited holds the block types already on the current route; reaching
        one of them again is a cycle and ends that route without a result.
        """
        if block_id in visited:
            return []
        visited = visited | {block_id}

        routes: List[Tuple[TypeDefinition, Tuple[PathStep, ...]]] = []
        for parent, field in self.cache.containers_allowing(block_id):
            step = PathStep(
                field_api_key=field.api_key,
                expected_block_type_id=block_id,
                localized=field.localized,
                field_kind=field.container_kind,
            )
            if not parent.modular_block:
                routes.append((parent, (step,)))
                continue
            for root, steps in self._paths_to_block(parent.id, visited):
                routes.append((root, steps + (step,)))
        return routes


def describe_kind(kind: ContainerKind) -> str:
    """Label used in log and progress messages."""
    return {
        ContainerKind.RICH_TEXT: "modular content",
        ContainerKind.STRUCTURED_TEXT: "structured text",
        ContainerKind.SINGLE_BLOCK: "single block",
    }[kind]
