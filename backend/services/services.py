"""
Service-layer functions for the teleport backend.

Goal:
- Keep framework (Flask) route files as thin "doorways" (parse inputs + call services + return response).
- Put reconciliation, query and mutation logic in here so it is reusable across APIs, CLI jobs, tests, etc.

Every function takes the store handle explicitly; nothing is cached between
calls, so each read sees the sheet as it is right now.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, Iterator, List, Optional

from db.sqlite_db import Sheet, SheetStore, StoreUnavailable
from services.headers import (
    REQUIRED_FIELDS,
    TIMESTAMP_FIELDS,
    Field,
    as_field,
    normalize_headers,
    resolve_columns,
)
from services.records import (
    Destination,
    GameRecord,
    decode_row,
    is_valid,
    parse_timestamp,
    to_count,
    to_text,
)

log = logging.getLogger(__name__)


__all__ = [
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "StoreUnavailableError",
    "DownVoteResult",
    "aggregate",
    "list_destinations",
    "get_destination",
    "update_record",
    "add_record",
    "report_down",
]


class ServiceError(Exception):
    """
    Base class for service-layer exceptions.
    API routes catch these and convert them into HTTP responses.
    """

    status_code: int = 500

    def __init__(self, message: str, *, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.payload: Dict[str, Any] = payload or {}


class ValidationError(ServiceError):
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class StoreUnavailableError(ServiceError):
    status_code = 503


@dataclass
class DownVoteResult:
    success: bool
    message: str
    new_count: Optional[int] = None
    last_down_vote: Optional[datetime] = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


@contextmanager
def _sheet(store: SheetStore, sheet_name: str, *, write: bool = False) -> Iterator[Sheet]:
    try:
        with (store.write(sheet_name) if write else store.read(sheet_name)) as sheet:
            yield sheet
    except StoreUnavailable as e:
        raise StoreUnavailableError(str(e), payload={"sheet": sheet_name}) from e


def _require_part_key(part_key: Any) -> str:
    v = "" if part_key is None else str(part_key)
    if not v:
        raise ValidationError("part_key is required")
    return v


def _find_row(
    values: List[List[Any]],
    cols: Dict[Field, int],
    part_key: str,
    game_title: Optional[str] = None,
) -> int:
    """
    Index of the first data row matching ``part_key`` (and ``game_title`` when
    given), or -1. Columns come from the header row, never from position.
    """
    key_idx = cols.get(Field.PART_KEY)
    if key_idx is None:
        return -1
    title_idx = cols.get(Field.TITLE)
    if game_title is not None and title_idx is None:
        return -1

    for i in range(1, len(values)):
        row = values[i]
        if to_text(row[key_idx]) != part_key:
            continue
        if game_title is not None and to_text(row[title_idx]) != game_title:
            continue
        return i
    return -1


def _coerce_for_write(f: Field, v: Any) -> Any:
    if f is Field.ACTIVE:
        if isinstance(v, str):
            return v.strip().lower() in ("1", "true", "yes", "y", "on")
        return bool(v)

    if f is Field.SERVER_DOWN:
        if isinstance(v, bool):
            raise ValidationError("server_down must be a non-negative integer")
        try:
            n = int(str(v).strip()) if isinstance(v, str) else int(v)
        except (TypeError, ValueError, OverflowError):
            raise ValidationError("server_down must be a non-negative integer") from None
        if n < 0 or (isinstance(v, float) and not v.is_integer()):
            raise ValidationError("server_down must be a non-negative integer")
        return n

    if f in TIMESTAMP_FIELDS:
        if v == "":
            return ""
        dt = parse_timestamp(v)
        if dt is None:
            raise ValidationError(f"{f.value} must be an ISO-8601 timestamp")
        return dt

    return to_text(v)


def _patch_fields(patch: Dict[str, Any]) -> Dict[Field, Any]:
    out: Dict[Field, Any] = {}
    for k, v in (patch or {}).items():
        f = as_field(k)
        if f is None or v is None:
            continue
        out[f] = _coerce_for_write(f, v)
    return out


# ---------------------------------------------------------------------------
# Aggregation / queries
# ---------------------------------------------------------------------------

def aggregate(values: List[List[Any]], tz: Optional[tzinfo] = None) -> List[Destination]:
    """
    Group the decoded rows of a sheet by part_key.

    Destinations come back in first-seen order; games keep row order within
    each destination. Rows missing a required field are dropped.
    """
    if len(values) < 2:
        return []

    headers = normalize_headers(values[0])
    grouped: Dict[str, Destination] = {}

    for i in range(1, len(values)):
        fields = decode_row(values[i], headers, tz)
        if not is_valid(fields):
            log.debug("aggregate_skip_row row=%s", i + 1)
            continue

        record = GameRecord.from_fields(fields)
        dest = grouped.get(record.part_key)
        if dest is None:
            dest = grouped[record.part_key] = Destination(part_key=record.part_key)
        dest.games.append(record)

    return list(grouped.values())


def list_destinations(
    *,
    store: SheetStore,
    sheet_name: str,
    tz: Optional[tzinfo] = None,
) -> List[Destination]:
    with _sheet(store, sheet_name) as sheet:
        values = sheet.get_values()
    return aggregate(values, tz)


def get_destination(
    *,
    store: SheetStore,
    sheet_name: str,
    part_key: str,
    tz: Optional[tzinfo] = None,
) -> Destination:
    part_key = _require_part_key(part_key)
    for dest in list_destinations(store=store, sheet_name=sheet_name, tz=tz):
        if dest.part_key == part_key:
            return dest
    raise NotFoundError(f'Game with part_key "{part_key}" not found', payload={"part_key": part_key})


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

def update_record(
    *,
    store: SheetStore,
    sheet_name: str,
    part_key: str,
    patch: Dict[str, Any],
) -> GameRecord:
    """
    Overwrite the cells named in ``patch`` on the first row whose part_key
    equals ``part_key``. Cells not named in ``patch`` are left alone;
    last_updated is always stamped with the current time.
    """
    part_key = _require_part_key(part_key)
    updates = _patch_fields(patch)
    for f in REQUIRED_FIELDS:
        if f in updates and not updates[f]:
            raise ValidationError(f"{f.value} cannot be empty")

    with _sheet(store, sheet_name, write=True) as sheet:
        values = sheet.get_values()
        headers = normalize_headers(values[0]) if values else []
        cols = resolve_columns(headers)

        row_idx = _find_row(values, cols, part_key)
        if row_idx == -1:
            raise NotFoundError(
                f'Game with part_key "{part_key}" not found',
                payload={"part_key": part_key},
            )

        row = list(values[row_idx])
        for f, v in updates.items():
            if f in cols:
                row[cols[f]] = v
        if Field.LAST_UPDATED in cols:
            row[cols[Field.LAST_UPDATED]] = _utc_now()

        sheet.set_row(row_idx, row)

    log.info("update_record part_key=%s row=%s fields=%s", part_key, row_idx + 1, sorted(f.value for f in updates))
    return GameRecord.from_fields(decode_row(row, headers))


def add_record(*, store: SheetStore, sheet_name: str, fields: Dict[str, Any]) -> GameRecord:
    """
    Append a row built from ``fields``; columns without a value get "".
    Duplicate part_keys are allowed and show up as extra game modes.
    """
    values_in = _patch_fields(fields)
    _require_part_key(values_in.get(Field.PART_KEY))

    with _sheet(store, sheet_name, write=True) as sheet:
        header = sheet.get_header()
        if not header:
            raise ValidationError(f'Sheet "{sheet_name}" has no header row')

        headers = normalize_headers(header)
        row: List[Any] = []
        for name in headers:
            f = as_field(name)
            row.append(values_in.get(f, "") if f is not None else "")

        cols = resolve_columns(headers)
        if Field.LAST_UPDATED in cols:
            row[cols[Field.LAST_UPDATED]] = _utc_now()

        row_idx = sheet.append_row(row)

    log.info("add_record part_key=%s row=%s", values_in[Field.PART_KEY], row_idx + 1)
    return GameRecord.from_fields(decode_row(row, headers))


def report_down(
    *,
    store: SheetStore,
    sheet_name: str,
    part_key: str,
    game_title: Optional[str] = None,
) -> DownVoteResult:
    """
    Register one "server down" vote.

    Never raises for a missing row or missing columns; those come back as an
    unsuccessful :class:`DownVoteResult`. The read-increment-write runs under
    the store's write lock so concurrent votes are never lost.
    """
    part_key = "" if part_key is None else str(part_key)
    if game_title == "":
        game_title = None

    with _sheet(store, sheet_name, write=True) as sheet:
        values = sheet.get_values()
        headers = normalize_headers(values[0]) if values else []
        cols = resolve_columns(headers)

        if Field.PART_KEY not in cols:
            return DownVoteResult(False, "Part Key column not found")
        if Field.SERVER_DOWN not in cols:
            return DownVoteResult(False, "Server Down column not found")

        row_idx = _find_row(values, cols, part_key, game_title) if part_key else -1
        if row_idx == -1:
            if game_title is not None:
                msg = f'Game with part_key "{part_key}" and title "{game_title}" not found'
            else:
                msg = f'Game with part_key "{part_key}" not found'
            log.info("down_vote_miss part_key=%s title=%s", part_key, game_title)
            return DownVoteResult(False, msg)

        sd_idx = cols[Field.SERVER_DOWN]
        new_count = to_count(values[row_idx][sd_idx]) + 1
        sheet.set_cell(row_idx, sd_idx, new_count)

        voted_at = None
        if Field.LAST_DOWN_VOTE in cols:
            voted_at = _utc_now()
            sheet.set_cell(row_idx, cols[Field.LAST_DOWN_VOTE], voted_at)

    if game_title is not None:
        log.info("down_vote part_key=%s title=%s new_count=%s", part_key, game_title, new_count)
    else:
        log.info("down_vote part_key=%s new_count=%s", part_key, new_count)

    return DownVoteResult(True, "Server down count updated successfully", new_count, voted_at)
