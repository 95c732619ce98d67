import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, List, Optional

log = logging.getLogger(__name__)

DB_PATH = os.environ.get("DB_PATH", "/data/app.db")


class StoreUnavailable(Exception):
    """The backing store cannot be opened or the named sheet does not exist."""


@dataclass(frozen=True)
class RowWrite:
    sheet_name: str
    row_index: int
    values: List[Any]


RowObserver = Callable[[RowWrite], None]


# Cells are typed the way a spreadsheet types them: text, number, boolean, date.

def _encode_cell(value: Any):
    if value is None:
        return "text", ""
    if isinstance(value, bool):
        return "bool", "1" if value else "0"
    if isinstance(value, (int, float)):
        return "number", repr(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return "date", value.astimezone(timezone.utc).isoformat()
    return "text", str(value)


def _decode_cell(kind: str, raw: str) -> Any:
    if kind == "bool":
        return raw == "1"
    if kind == "number":
        try:
            return int(raw)
        except ValueError:
            return float(raw)
    if kind == "date":
        return datetime.fromisoformat(raw)
    return raw


class Sheet:
    """One named sheet, bound to an open connection.

    Rows are 0-based: row 0 is the header row. ``get_values`` returns the
    data range the way a spreadsheet does, every row padded with ``""`` up
    to the widest row.
    """

    def __init__(self, conn: sqlite3.Connection, sheet_id: int, name: str):
        self._conn = conn
        self._id = sheet_id
        self.name = name
        self.writes: List[RowWrite] = []

    def get_values(self) -> List[List[Any]]:
        rows = self._conn.execute(
            """
            SELECT row_idx, col_idx, kind, value
              FROM sheet_cells
             WHERE sheet_id = ?
             ORDER BY row_idx, col_idx
            """,
            (self._id,),
        ).fetchall()
        if not rows:
            return []

        n_rows = max(r["row_idx"] for r in rows) + 1
        n_cols = max(r["col_idx"] for r in rows) + 1
        out = [[""] * n_cols for _ in range(n_rows)]
        for r in rows:
            out[r["row_idx"]][r["col_idx"]] = _decode_cell(r["kind"], r["value"])
        return out

    def get_header(self) -> List[Any]:
        values = self.get_values()
        return values[0] if values else []

    def last_row(self) -> int:
        row = self._conn.execute(
            "SELECT MAX(row_idx) AS n FROM sheet_cells WHERE sheet_id = ?",
            (self._id,),
        ).fetchone()
        return -1 if row["n"] is None else int(row["n"])

    def set_row(self, row_index: int, values: List[Any]) -> None:
        if row_index < 0:
            raise ValueError("row_index must be >= 0")
        for col_index, v in enumerate(values):
            self._put(row_index, col_index, v)
        self.writes.append(RowWrite(self.name, row_index, list(values)))

    def set_cell(self, row_index: int, col_index: int, value: Any) -> None:
        self._put(row_index, col_index, value)
        self.writes.append(RowWrite(self.name, row_index, self._row(row_index)))

    def append_row(self, values: List[Any]) -> int:
        row_index = self.last_row() + 1
        self.set_row(row_index, values)
        return row_index

    def clear(self) -> None:
        self._conn.execute("DELETE FROM sheet_cells WHERE sheet_id = ?", (self._id,))

    def _put(self, row_index: int, col_index: int, value: Any) -> None:
        kind, raw = _encode_cell(value)
        self._conn.execute(
            """
            INSERT INTO sheet_cells (sheet_id, row_idx, col_idx, kind, value)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(sheet_id, row_idx, col_idx) DO UPDATE SET
              kind = excluded.kind,
              value = excluded.value
            """,
            (self._id, row_index, col_index, kind, raw),
        )

    def _row(self, row_index: int) -> List[Any]:
        rows = self._conn.execute(
            """
            SELECT col_idx, kind, value
              FROM sheet_cells
             WHERE sheet_id = ? AND row_idx = ?
             ORDER BY col_idx
            """,
            (self._id, row_index),
        ).fetchall()
        if not rows:
            return []
        out = [""] * (rows[-1]["col_idx"] + 1)
        for r in rows:
            out[r["col_idx"]] = _decode_cell(r["kind"], r["value"])
        return out


class SheetStore:
    """A spreadsheet-like document persisted in a SQLite file.

    Reads open a short-lived connection and never wait on writers. Every
    write runs inside :meth:`write`, which holds a process-wide lock and a
    ``BEGIN IMMEDIATE`` transaction for the whole read-modify-write span.
    """

    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._observers: List[RowObserver] = []
        self._closed = True

    def open(self) -> "SheetStore":
        db_dir = os.path.dirname(os.path.abspath(self.db_path))
        try:
            os.makedirs(db_dir, exist_ok=True)
            self._closed = False
            init_tables(self)
        except (OSError, sqlite3.Error) as e:
            self._closed = True
            raise StoreUnavailable(f"cannot open store at {self.db_path}: {e}") from e
        log.info("store_open db_path=%s", self.db_path)
        return self

    def close(self) -> None:
        if not self._closed:
            log.info("store_close db_path=%s", self.db_path)
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def add_observer(self, callback: RowObserver) -> None:
        self._observers.append(callback)

    @contextmanager
    def get_conn(self, *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        if self._closed:
            raise StoreUnavailable("store is closed")
        try:
            conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"cannot open store at {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row

        try:
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        except sqlite3.Error as e:
            conn.close()
            raise StoreUnavailable(f"cannot open store at {self.db_path}: {e}") from e

        try:
            yield conn
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    @contextmanager
    def read(self, sheet_name: str) -> Iterator[Sheet]:
        with self.get_conn() as conn:
            yield _open_sheet(conn, sheet_name)

    @contextmanager
    def write(self, sheet_name: str) -> Iterator[Sheet]:
        with self._lock:
            with self.get_conn(immediate=True) as conn:
                sheet = _open_sheet(conn, sheet_name)
                yield sheet
        # Observers may write back to the store, so they run after the lock is released.
        self._notify(sheet.writes)

    def create_sheet(self, sheet_name: str) -> None:
        with self._lock:
            with self.get_conn(immediate=True) as conn:
                conn.execute(
                    "INSERT OR IGNORE INTO sheets (name, created_at) VALUES (?, ?)",
                    (sheet_name, datetime.now(timezone.utc).isoformat()),
                )

    def sheet_names(self) -> List[str]:
        with self.get_conn() as conn:
            rows = conn.execute("SELECT name FROM sheets ORDER BY id").fetchall()
        return [r["name"] for r in rows]

    def _notify(self, writes: List[RowWrite]) -> None:
        for event in writes:
            for cb in self._observers:
                try:
                    cb(event)
                except Exception:
                    log.exception("observer_failed sheet=%s row=%s", event.sheet_name, event.row_index)


def _open_sheet(conn: sqlite3.Connection, sheet_name: str) -> Sheet:
    row = conn.execute("SELECT id FROM sheets WHERE name = ?", (sheet_name,)).fetchone()
    if not row:
        raise StoreUnavailable(f'Sheet "{sheet_name}" not found')
    return Sheet(conn, int(row["id"]), sheet_name)


def init_tables(store: SheetStore) -> None:
    with store.get_conn(immediate=True) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sheets (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                created_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sheet_cells (
                sheet_id INTEGER NOT NULL REFERENCES sheets(id) ON DELETE CASCADE,
                row_idx INTEGER NOT NULL,
                col_idx INTEGER NOT NULL,
                kind TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (sheet_id, row_idx, col_idx)
            )
            """
        )
