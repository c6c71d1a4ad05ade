"""
Exception hierarchy for Blocklift.

Schema-structure problems (DiscoveryError, UniquenessExhaustedError,
MigrationError) abort a conversion. RepositoryError raised while updating a
single record is caught by the field conversion engine, logged and recorded.
"""

from typing import Optional


class BlockliftError(Exception):
    """Base exception for all Blocklift errors."""


class DiscoveryError(BlockliftError):
    """Raised when a type or field is not of the kind a conversion requires."""


class UniquenessExhaustedError(BlockliftError):
    """Raised when no free type key/name is found within the retry ceiling."""


class RepositoryError(BlockliftError):
    """
    Raised when the content repository rejects or fails an operation.

    Args:
        message: Human-readable description of the failure
        status_code: HTTP status returned by the remote API, if any
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DocumentError(BlockliftError):
    """Raised when a rich-document tree is malformed."""


class UnknownNodeError(DocumentError):
    """Raised when a rich-document node carries an unrecognised type tag."""

    def __init__(self, node_type: object):
        super().__init__(f"Unknown rich-document node type: {node_type!r}")
        self.node_type = node_type


class MigrationError(BlockliftError):
    """Raised when a standalone record cannot be created from embedded data."""
