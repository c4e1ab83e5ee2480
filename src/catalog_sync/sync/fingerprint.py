"""Content fingerprints for change detection."""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from catalog_sync.models.entity import SourceEntity

NULL_TOKEN = ""


def canonical_value(value: Any) -> Any:
    """
    Reduce a raw field value to a canonical JSON-compatible form.

    Scalars become strings, sequences become sorted lists and mappings become
    dicts with string keys. Null and empty string share one token.

    Args:
        value: Raw field value

    Returns:
        Canonical representation (str, list or dict)
    """
    if value is None:
        return NULL_TOKEN
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, Decimal):
        try:
            return format(value.normalize(), "f")
        except ArithmeticError:
            return str(value)
    if isinstance(value, str):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): canonical_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        members = [canonical_value(item) for item in value]
        return sorted(members, key=_sort_key)
    return str(value)


def _sort_key(member: Any) -> str:
    return json.dumps(member, sort_keys=True, ensure_ascii=False)


def canonical_form(entity: SourceEntity) -> str:
    """Serialize the sync-relevant content of an entity deterministically."""
    fields = sorted(
        ([f.key, f.type, canonical_value(f.value)] for f in entity.fields),
        key=lambda item: (item[0], item[1]),
    )
    payload = {"natural_key": entity.natural_key, "fields": fields}
    return json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def fingerprint(entity: SourceEntity) -> str:
    """
    Compute the SHA-256 fingerprint of an entity.

    The external id is not part of the digest: identical content under a
    reassigned id yields the same fingerprint.

    Args:
        entity: Source entity

    Returns:
        Hex digest (64 characters)
    """
    return hashlib.sha256(canonical_form(entity).encode("utf-8", "surrogatepass")).hexdigest()
