"""
Locale utilities for Blocklift.

Localized field values are dicts keyed by locale code. Every write of a
localized field must name exactly the project's locales; these helpers
build such values.
"""

import copy
from typing import Any, Dict, Iterable, List, Optional

# Locale key used for data read through non-localized hops
DEFAULT_LOCALE_KEY = "__default__"


def wrap_fields_in_localized_hash(data: Dict[str, Any], locales: List[str]) -> Dict[str, Dict[str, Any]]:
    """
    Duplicate every field value across all locales.

    Used when the destination type is localized but the source data is not.
    """
    return {
        key: {locale: copy.deepcopy(value) for locale in locales}
        for key, value in data.items()
    }


def ensure_all_locales(value: Dict[str, Any], locales: List[str], fill: Any = None) -> Dict[str, Any]:
    """Return value restricted to locales, with missing locales set to fill."""
    return {
        locale: value[locale] if locale in value else copy.deepcopy(fill)
        for locale in locales
    }


def complete_localized_update(new_value: Dict[str, Any], original: Optional[Dict[str, Any]],
                              locales: List[str], fill: Any = None) -> Dict[str, Any]:
    """
    Build a localized value naming every locale.

    Each locale takes the new value, else the original value, else fill.
    """
    return ensure_all_locales({**(original or {}), **new_value}, locales, fill)


def choose_fallback_locale(locale_data: Dict[str, Dict[str, Any]], locales: List[str],
                           preferred: Optional[str] = None) -> Optional[str]:
    """
    Pick the locale whose data fills locales that have none.

    Preference order: the configured locale, the project's default locale,
    then the first locale that has data.
    """
    with_data = [key for key in locale_data if key != DEFAULT_LOCALE_KEY]
    if preferred and preferred in with_data:
        return preferred
    if locales and locales[0] in with_data:
        return locales[0]
    return with_data[0] if with_data else None


def merge_locale_data(locale_data: Dict[str, Dict[str, Any]], locales: List[str],
                      preferred: Optional[str] = None,
                      field_keys: Optional[Iterable[str]] = None) -> Dict[str, Dict[str, Any]]:
    """
    Merge per-locale block data into per-field localized values.

    For every field and every project locale the value comes from that
    locale's data, else from data read through a non-localized hop, else
    from the fallback locale, else None.

    Args:
        locale_data: Block field values keyed by locale (or DEFAULT_LOCALE_KEY)
        locales: The project's locales
        preferred: Designated fallback locale
        field_keys: Fields to include (defaults to every field seen in any locale)

    Returns:
        Field values keyed by field, then by locale
    """
    if field_keys is None:
        keys: List[str] = []
        for data in locale_data.values():
            for key in data:
                if key not in keys:
                    keys.append(key)
        field_keys = keys

    fallback = choose_fallback_locale(locale_data, locales, preferred)
    fallback_data = locale_data.get(fallback) if fallback else None
    default_data = locale_data.get(DEFAULT_LOCALE_KEY)

    merged: Dict[str, Dict[str, Any]] = {}
    for key in field_keys:
        value: Dict[str, Any] = {}
        for locale in locales:
            source = locale_data.get(locale) or default_data
            if source is not None and key in source:
                value[locale] = copy.deepcopy(source[key])
            elif fallback_data is not None and key in fallback_data:
                value[locale] = copy.deepcopy(fallback_data[key])
            else:
                value[locale] = None
        merged[key] = value
    return merged
