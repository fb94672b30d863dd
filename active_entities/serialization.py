"""Canonical JSON encoding of entity rows."""

import json
from datetime import date
from typing import Any, Dict

from .timestamps import format_instant


def canonical_json(row: Dict[str, Any]) -> str:
    """Serialise ``row`` with sorted keys; dates become ISO-8601 strings."""

    return json.dumps(row, sort_keys=True, default=_encode_default)


def _encode_default(value: Any) -> Any:
    if isinstance(value, date):
        return format_instant(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serialisable")
