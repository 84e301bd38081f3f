"""Utility functions for repository operations."""

import json
from typing import Any, Optional, Union

# Upper bounds for free-text error columns
MAX_ERROR_LENGTH = 2000
MAX_TARGET_ERROR_LENGTH = 1000


def ensure_json(value: Optional[Union[str, dict, list]]) -> Optional[Union[dict, list]]:
    """
    Normalize JSONB values from database to Python dict/list.

    asyncpg returns JSONB as str unless a codec is configured on the
    connection; both shapes are accepted here.

    Raises:
        TypeError: If value is an unexpected type
        json.JSONDecodeError: If string is not valid JSON
    """
    if value is None:
        return None

    if isinstance(value, (dict, list)):
        return value

    if isinstance(value, str):
        return json.loads(value)

    raise TypeError(
        f"Expected str, dict, list, or None for JSONB value, got {type(value).__name__}"
    )


def dump_json(value: Any) -> Optional[str]:
    """Serialize a value for a ``$n::jsonb`` parameter (None stays NULL)."""
    if value is None:
        return None
    return json.dumps(value, default=str)


def truncate_error(error: Any, limit: int = MAX_ERROR_LENGTH) -> str:
    """Stringify and clip an error for storage."""
    return str(error)[:limit]
