"""
Header normalization: free-text sheet column labels -> canonical field names.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, List, Sequence


class Field(str, Enum):
    PART_KEY = "part_key"
    TP_URL = "tp_url"
    DC_URL = "dc_url"
    TITLE = "title"
    ACTIVE = "active"
    LAST_UPDATED = "last_updated"
    LAST_DOWN_VOTE = "last_down_vote"
    SERVER_DOWN = "server_down"
    IMAGE_URL = "image_url"
    DESCRIPTION = "description"


REQUIRED_FIELDS = (Field.PART_KEY, Field.TP_URL, Field.DC_URL, Field.TITLE)
TIMESTAMP_FIELDS = (Field.LAST_UPDATED, Field.LAST_DOWN_VOTE)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

# Trailing punctuation ("Server Down?", "TP URL:") leaves a dangling underscore.
_CORRECTIONS: Dict[str, str] = {f"{f.value}_": f.value for f in Field}


def normalize_header(h: Any) -> str:
    s = "" if h is None else str(h)
    k = _NON_ALNUM.sub("_", s.lower())
    return _CORRECTIONS.get(k, k)


def normalize_headers(headers: Sequence[Any]) -> List[str]:
    return [normalize_header(h) for h in headers]


def as_field(name: str):
    """Return the :class:`Field` for a canonical name, or None if unknown."""
    try:
        return Field(name)
    except ValueError:
        return None


def resolve_columns(headers: Sequence[str]) -> Dict[Field, int]:
    """
    Map each canonical field to the index of the first column carrying it.
    ``headers`` must already be normalized.
    """
    out: Dict[Field, int] = {}
    for idx, name in enumerate(headers):
        f = as_field(name)
        if f is not None and f not in out:
            out[f] = idx
    return out
