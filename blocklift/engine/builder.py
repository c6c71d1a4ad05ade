"""
Standalone type creation for Blocklift.

Derives a new top-level type from an embeddable one: a unique name and
api_key, then a copy of every field definition.
"""

import copy
import logging
import re
from typing import Any, Dict, List, Optional

from ..config import ConversionOptions
from ..errors import UniquenessExhaustedError
from ..models import FieldDefinition, TypeDefinition
from ..repository import ContentRepository

API_KEY_MAX_LENGTH = 40
MAX_ATTEMPTS = 100
KEY_SUFFIX = "_conv"

# Validators whose settings name another field of the same type by id
FIELD_REFERENCE_VALIDATORS = {
    "slug_title_field": "title_field_id",
}

# Fields created after every other field, since their validators reference other fields
DEPENDENT_FIELD_TYPES = {"slug"}


def letter_suffix(n: int) -> str:
    """1 -> 'a', 26 -> 'z', 27 -> 'aa'. Type api_keys may not contain digits."""
    result = ""
    while n > 0:
        n -= 1
        result = chr(ord("a") + n % 26) + result
        n //= 26
    return result


def sanitize_api_key(key: str, allow_digits: bool = True) -> str:
    """Lowercase, underscores only, no leading/trailing or repeated underscores."""
    pattern = r"[^a-z0-9_]" if allow_digits else r"[^a-z_]"
    key = re.sub(pattern, "_" if allow_digits else "", key.lower())
    return re.sub(r"_+", "_", key).strip("_")


def base_api_key(block_api_key: str, name_suffix: str = "") -> str:
    """
    Starting api_key for the standalone type: plural, truncated, with the conversion suffix.

    Room is left for a letter suffix added on collision.
    """
    key = sanitize_api_key(block_api_key)
    if not key.endswith("s"):
        key += "s"
    suffix = KEY_SUFFIX + (f"_{name_suffix}" if name_suffix else "")
    max_base = max(1, API_KEY_MAX_LENGTH - len(suffix) - 3)
    if len(key) > max_base:
        key = key[:max_base].rstrip("_")
    key = sanitize_api_key(key + suffix, allow_digits=False)
    return key[:API_KEY_MAX_LENGTH - 3].rstrip("_")


def candidate_api_key(key: str, attempt: int) -> str:
    """key for the first attempt, then key with a letter suffix, always within the length limit."""
    if attempt == 0:
        return key[:API_KEY_MAX_LENGTH].rstrip("_")
    letters = letter_suffix(attempt)
    stem = key[:API_KEY_MAX_LENGTH - len(letters) - 1].rstrip("_")
    return sanitize_api_key(f"{stem}_{letters}", allow_digits=False)


def sanitize_appearance(appearance: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Copy of a field appearance without the read-only "type" entry."""
    return {key: value for key, value in (appearance or {}).items() if key != "type"}


def remap_field_references(validators: Dict[str, Any], field_ids: Dict[str, str]) -> Dict[str, Any]:
    """
    Point validators that reference sibling fields at the copies of those fields.

    A reference to a field that has no copy yet is dropped with a warning,
    so the field is still created (without that validator).
    """
    updated = copy.deepcopy(validators)
    for name, setting in FIELD_REFERENCE_VALIDATORS.items():
        validator = updated.get(name)
        if not isinstance(validator, dict) or not validator.get(setting):
            continue
        old_id = validator[setting]
        if old_id in field_ids:
            validator[setting] = field_ids[old_id]
        else:
            logging.warning(f"Dropping {name} validator: referenced field {old_id} was not copied")
            del updated[name]
    return updated


class StandaloneTypeBuilder:
    """
    Creates the top-level type that replaces a block type.

    Args:
        repository: Content repository to create the type in
        options: Conversion options (name_suffix is applied to the generated name and key)
    """

    def __init__(self, repository: ContentRepository, options: ConversionOptions):
        self.repository = repository
        self.options = options

    def unique_identity(self, block: TypeDefinition) -> Dict[str, str]:
        """
        Find a name and api_key no existing type uses.

        Raises:
            UniquenessExhaustedError: If every candidate up to the retry ceiling is taken
        """
        existing = self.repository.list_types()
        keys = {t.api_key for t in existing}
        names = {t.name for t in existing}

        key = base_api_key(block.api_key, self.options.name_suffix)
        base_name = re.sub(r"[^\w\s-]", "", block.name).strip() or "Converted Block"
        if self.options.name_suffix:
            base_name = f"{base_name} {self.options.name_suffix}"

        api_key, name = candidate_api_key(key, 0), f"{base_name} (Converted)"
        attempt = 0
        while api_key in keys or name in names:
            attempt += 1
            if attempt > MAX_ATTEMPTS:
                raise UniquenessExhaustedError(
                    f"Could not find a unique model name/api_key for {block.api_key} after {MAX_ATTEMPTS} attempts"
                )
            api_key = candidate_api_key(key, attempt)
            name = f"{base_name} (Converted {attempt})"

        return {"name": name, "api_key": api_key}

    def build(self, block: TypeDefinition, fields: List[FieldDefinition],
              force_localized: bool = False) -> TypeDefinition:
        """
        Create the standalone type with a copy of every field of block.

        Args:
            block: The embeddable type
            fields: Its field definitions
            force_localized: Create every field localized (blocks used in localized contexts)

        Returns:
            The created type, with its title field set to the first string field
        """
        identity = self.unique_identity(block)
        new_type = self.repository.create_type({
            **identity,
            "modular_block": False,
            "sortable": True,
            "draft_mode_active": False,
            "collection_appearance": "table",
        })
        logging.info(f"Created model {new_type.api_key} ({new_type.name}) from block {block.api_key}")

        ordered = sorted(fields, key=lambda f: (f.field_type in DEPENDENT_FIELD_TYPES, f.position))
        field_ids: Dict[str, str] = {}
        title_field_id = None

        for field in ordered:
            attributes: Dict[str, Any] = {
                "label": field.label,
                "api_key": field.api_key,
                "field_type": field.field_type,
                "localized": force_localized or field.localized,
                "validators": remap_field_references(field.validators, field_ids),
                "appearance": sanitize_appearance(field.appearance),
                "position": field.position,
            }
            if field.hint:
                attributes["hint"] = field.hint
            # A non-localized default does not fit a localized field
            if field.default_value is not None and not (force_localized and not field.localized):
                attributes["default_value"] = field.default_value

            created = self.repository.create_field(new_type.id, attributes)
            field_ids[field.id] = created.id
            if title_field_id is None and field.field_type == "string":
                title_field_id = created.id

        if title_field_id is not None:
            new_type = self.repository.update_type(new_type.id, {"title_field": title_field_id})
        logging.info(f"Copied {len(field_ids)} fields to {new_type.api_key} (localized: {force_localized})")
        return new_type
