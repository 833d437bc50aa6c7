"""Change detection between locally assembled DOI metadata and the DataCite record."""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Set, Union

logger = logging.getLogger(__name__)


Scalar = Union[str, int, float, bool, None]
MetadataValue = Union[Scalar, List['MetadataValue'], Dict[str, 'MetadataValue']]

# DataCite augments "types" with derived citation types (ris, bibtex, citeproc, ...),
# so its element count never matches the submitted block.
DEFAULT_IGNORE_COUNT_KEYS = frozenset({"types"})


def changed_fields(
    existing: Mapping[str, MetadataValue],
    candidate: Mapping[str, MetadataValue],
    ignore_count_keys: Iterable[str] = DEFAULT_IGNORE_COUNT_KEYS
) -> Set[str]:
    """
    Determine which top-level metadata fields differ between two records.

    Only keys present in the candidate are compared; extra keys on the existing
    record (e.g. fields DataCite adds by itself) are ignored. Structured values
    are compared recursively, scalars with type-coercing equality so that a
    numeric field serialized as string by the API ("2024") matches the native
    number (2024) computed locally.

    Args:
        existing: Attributes of the DataCite record (may be empty)
        candidate: Freshly assembled metadata
        ignore_count_keys: Top-level keys for which a differing element count
            alone does not mark the field as changed

    Returns:
        Set of changed top-level field names

    Examples:
        >>> changed_fields({"publicationYear": "2024"}, {"publicationYear": 2024})
        set()
        >>> sorted(changed_fields({}, {"titles": [], "version": ""}))
        ['titles', 'version']
    """
    changed = _changed_keys(existing, candidate, frozenset(ignore_count_keys))
    return {str(key) for key in changed}


def _changed_keys(existing: Mapping, candidate: Mapping, ignore_count_keys: frozenset) -> Set:
    changed = set()
    for key, value in candidate.items():
        if key not in existing:
            changed.add(key)
            continue

        old_value = existing[key]
        if _is_structured(value) or _is_structured(old_value):
            if not (_is_structured(value) and _is_structured(old_value)):
                changed.add(key)
                continue
            old_items = _as_mapping(old_value)
            new_items = _as_mapping(value)
            if len(old_items) != len(new_items) and key not in ignore_count_keys:
                changed.add(key)
                continue
            # The allow-list only applies at the top level
            if _changed_keys(old_items, new_items, frozenset()):
                changed.add(key)
        elif not values_equal(old_value, value):
            changed.add(key)

    return changed


def values_equal(left: Any, right: Any) -> bool:
    """
    Compare two scalar metadata values with type coercion.

    Numbers equal their numeric string form ("1" == 1), and None equals
    the empty string. Everything else uses plain equality.
    """
    if left == right:
        return True

    if left is None or right is None:
        return (left if left is not None else "") == (right if right is not None else "")

    if isinstance(left, str) and _is_number(right):
        return _numeric_string_equals(left, right)
    if isinstance(right, str) and _is_number(left):
        return _numeric_string_equals(right, left)

    return False


def _is_structured(value: Any) -> bool:
    return isinstance(value, (Mapping, list, tuple))


def _as_mapping(value: Any) -> Mapping:
    if isinstance(value, Mapping):
        return value
    return dict(enumerate(value))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _numeric_string_equals(text: str, number: Union[int, float]) -> bool:
    try:
        return float(text.strip()) == float(number)
    except ValueError:
        return False
