"""
Content repository interface for Blocklift.

This module defines the abstract interface over the content management API
that every engine component talks to.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List

from ..models import TypeDefinition, FieldDefinition


class ContentRepository(ABC):
    """
    Abstract base class for content repository adapters.

    Types and fields are returned as models. Records are plain dictionaries:
    field values keyed by api_key, plus "id" and "item_type". With nested
    reads, embedded blocks are expanded into full block records.
    """

    # Types

    @abstractmethod
    def list_types(self) -> List[TypeDefinition]:
        """Return every type (top-level and embeddable) in the project."""
        pass

    @abstractmethod
    def find_type(self, type_id: str) -> TypeDefinition:
        """Return one type by id or api_key."""
        pass

    @abstractmethod
    def create_type(self, attributes: Dict[str, Any]) -> TypeDefinition:
        """
        Create a type.

        Args:
            attributes: name, api_key, modular_block and presentation options

        Returns:
            The created type
        """
        pass

    @abstractmethod
    def update_type(self, type_id: str, attributes: Dict[str, Any]) -> TypeDefinition:
        """Update name, api_key or title_field (a field id) of a type."""
        pass

    @abstractmethod
    def destroy_type(self, type_id: str) -> None:
        pass

    # Fields

    @abstractmethod
    def list_fields(self, type_id: str) -> List[FieldDefinition]:
        """Return the fields of a type ordered by position."""
        pass

    @abstractmethod
    def find_field(self, field_id: str) -> FieldDefinition:
        pass

    @abstractmethod
    def create_field(self, type_id: str, attributes: Dict[str, Any]) -> FieldDefinition:
        pass

    @abstractmethod
    def update_field(self, field_id: str, attributes: Dict[str, Any]) -> FieldDefinition:
        pass

    @abstractmethod
    def destroy_field(self, field_id: str) -> None:
        pass

    # Records

    @abstractmethod
    def iter_records(self, type_id: str, nested: bool = True) -> Iterator[Dict[str, Any]]:
        """
        Iterate over all records of a type, page by page.

        Args:
            type_id: Type to filter on
            nested: Expand embedded blocks into full block records

        Returns:
            Iterator of record dictionaries
        """
        pass

    @abstractmethod
    def find_record(self, record_id: str, nested: bool = True) -> Dict[str, Any]:
        pass

    @abstractmethod
    def create_record(self, type_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    def update_record(self, record_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """Write the given field values; fields not named are left untouched."""
        pass

    # Project

    @abstractmethod
    def list_locales(self) -> List[str]:
        """Return the project's locales, the first being the default."""
        pass

    def find_field_by_key(self, type_id: str, api_key: str):
        """Return the field of type_id with the given api_key, or None."""
        for field in self.list_fields(type_id):
            if field.api_key == api_key:
                return field
        return None
