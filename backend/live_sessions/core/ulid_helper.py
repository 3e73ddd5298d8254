"""ULID helpers for primary keys and identifiers arriving over HTTP."""

from typing import Optional

import ulid


def generate_ulid() -> str:
    """New 26-character primary key."""
    return str(ulid.ULID())


def parse_ulid(value: Optional[str]) -> Optional[ulid.ULID]:
    if not value:
        return None
    try:
        return ulid.ULID.from_str(value)
    except (ValueError, TypeError):
        return None


def is_valid_ulid(value: Optional[str]) -> bool:
    return parse_ulid(value) is not None
