"""
Row decoding and the record types served to clients.

A sheet row is decoded into a mapping of canonical field -> typed value,
validated, and then turned into a :class:`GameRecord`. Records sharing a
``part_key`` are grouped into a :class:`Destination`.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Union

from services.headers import REQUIRED_FIELDS, TIMESTAMP_FIELDS, Field, as_field

log = logging.getLogger(__name__)


def format_timestamp(dt: Union[datetime, str, None], tz: Optional[tzinfo] = None) -> str:
    """Render ``dt`` as ``M/D/YYYY, h:MM:SS AM`` in ``tz`` (UTC by default).

    Text that never parsed as a timestamp is returned as is.
    """
    if dt is None:
        return ""
    if isinstance(dt, str):
        return dt
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    local = dt.astimezone(tz or timezone.utc)
    hour = local.hour % 12 or 12
    ampm = "AM" if local.hour < 12 else "PM"
    return f"{local.month}/{local.day}/{local.year}, {hour}:{local:%M:%S} {ampm}"


def parse_timestamp(v: Any) -> Optional[datetime]:
    """Best-effort conversion of a cell to an aware datetime; None when impossible."""
    if isinstance(v, datetime):
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)
    s = "" if v is None else str(v).strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def to_count(v: Any) -> int:
    """Coerce a cell to a non-negative counter; anything unusable is 0."""
    if isinstance(v, bool):
        return int(v)
    if isinstance(v, (int, float)):
        n = v
    else:
        s = "" if v is None else str(v).strip()
        try:
            n = float(s) if s else 0
        except ValueError:
            return 0
    if isinstance(n, float) and not math.isfinite(n):
        return 0
    return max(int(n), 0)


def to_bool(v: Any) -> bool:
    # Cell truthiness: any non-empty text counts, including "false".
    if isinstance(v, str):
        return v != ""
    return bool(v)


def to_text(v: Any, tz: Optional[tzinfo] = None) -> str:
    if v is None:
        return ""
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    if isinstance(v, datetime):
        return format_timestamp(v, tz)
    return str(v)


def decode_row(
    row: Sequence[Any],
    headers: Sequence[str],
    tz: Optional[tzinfo] = None,
) -> Dict[Field, Any]:
    """
    Decode one raw row against normalized headers.

    Headers beyond the end of the row are ignored, as are headers that are not
    canonical fields. When two columns normalize to the same field the first
    one wins. Date cells outside the timestamp fields are rendered in ``tz``.
    """
    out: Dict[Field, Any] = {}
    for idx, name in enumerate(headers[: len(row)]):
        f = as_field(name)
        if f is None:
            if name:
                log.debug("decode_skip_column header=%s", name)
            continue
        if f in out:
            continue

        v = row[idx]
        if f is Field.ACTIVE:
            out[f] = to_bool(v)
        elif f is Field.SERVER_DOWN:
            out[f] = to_count(v)
        elif f in TIMESTAMP_FIELDS:
            dt = parse_timestamp(v)
            if dt is None:
                # Non-ISO text ("N/A", "pending") is kept for display.
                text = to_text(v, tz).strip()
                out[f] = text or None
            else:
                out[f] = dt
        else:
            out[f] = to_text(v, tz)
    return out


def is_valid(fields: Dict[Field, Any]) -> bool:
    return all(fields.get(f) for f in REQUIRED_FIELDS)


@dataclass
class GameRecord:
    part_key: str = ""
    tp_url: str = ""
    dc_url: str = ""
    title: str = ""
    active: bool = False
    last_updated: Union[datetime, str, None] = None
    last_down_vote: Union[datetime, str, None] = None
    server_down: int = 0
    image_url: str = ""
    description: str = ""
    columns: FrozenSet[Field] = field(default_factory=frozenset, repr=False, compare=False)

    @classmethod
    def from_fields(cls, fields: Dict[Field, Any]) -> "GameRecord":
        kwargs = {f.value: v for f, v in fields.items() if v is not None}
        return cls(columns=frozenset(fields), **kwargs)

    def to_dict(self, tz: Optional[tzinfo] = None) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in Field:
            if self.columns and f not in self.columns:
                continue
            v = getattr(self, f.value)
            if f in TIMESTAMP_FIELDS:
                v = format_timestamp(v, tz)
            out[f.value] = v
        return out


@dataclass
class Destination:
    part_key: str
    games: List[GameRecord] = field(default_factory=list)

    @property
    def has_multiple_modes(self) -> bool:
        return len(self.games) > 1

    def to_dict(self, tz: Optional[tzinfo] = None) -> Dict[str, Any]:
        return {
            "part_key": self.part_key,
            "games": [g.to_dict(tz) for g in self.games],
            "has_multiple_modes": self.has_multiple_modes,
        }
