from __future__ import annotations

import datetime as _dt
import json
import logging
import queue
import sqlite3
import threading
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional

from .errors import RecordShapeError, StorageSetupError
from .models import SqlRecord, SqlRow, TableDef

logger = logging.getLogger(__name__)


class Storage(ABC):
    """Abstract base class for all storage backends.

    Subclasses must implement add_doc() and close() to handle
    persistence of parsed records.
    """

    @abstractmethod
    def add_doc(self, doc: Any) -> None:
        """Persist a single record."""

    @abstractmethod
    def close(self) -> None:
        """Flush pending writes and release resources."""


def _sql_row(doc: Any) -> SqlRow:
    if not isinstance(doc, SqlRecord):
        raise RecordShapeError(f"Expecting a SqlRecord, got {type(doc).__name__}")
    return doc.sql_row()


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _adapt_value(value: Any) -> Any:
    if isinstance(value, _dt.datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, _dt.date):
        return value.isoformat()
    return value


def build_create_table(table_def: TableDef) -> str:
    lines = [f"    {_quote(col)} {decl}" for col, decl in table_def.columns.items()]
    if table_def.primary_keys:
        keys = ", ".join(_quote(k) for k in table_def.primary_keys)
        lines.append(f"    PRIMARY KEY({keys})")
    return f"CREATE TABLE IF NOT EXISTS {_quote(table_def.name)} (\n" + ",\n".join(lines) + "\n)"


def build_insert(row: SqlRow) -> tuple[str, List[Any]]:
    names = ", ".join(_quote(name) for name in row.columns)
    placeholders = ", ".join("?" for _ in row.columns)
    args = [_adapt_value(v) for v in row.columns.values()]
    return f"INSERT INTO {_quote(row.table)} ({names}) VALUES ({placeholders})", args


class SqlStorage(Storage):
    """Inserts SqlRecords into a SQLite database, one writer at a time.

    Tables are created when the storage is opened. Errors from executing an
    insert (constraint violations, disk errors) propagate to the caller.
    """

    def __init__(self, path: str, table_defs: Iterable[TableDef] = ()) -> None:
        self._path = path
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StorageSetupError(f"failed to open '{path}': {exc}") from exc
        try:
            for table_def in table_defs:
                self._create_table(table_def)
        except StorageSetupError:
            self._conn.close()
            raise

    def _create_table(self, table_def: TableDef) -> None:
        try:
            with self._lock:
                self._conn.execute(build_create_table(table_def))
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StorageSetupError(f"failed to create table '{table_def.name}': {exc}") from exc
        logger.debug(f"Table '{table_def.name}' ready in {self._path}")

    def add_doc(self, doc: Any) -> None:
        row = _sql_row(doc)
        if not row.columns:
            raise RecordShapeError(f"record for table '{row.table}' has no columns")
        sql, args = build_insert(row)
        with self._lock:
            try:
                self._conn.execute(sql, args)
                self._conn.commit()
            except sqlite3.Error:
                self._conn.rollback()
                raise

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class JsonlStorage(Storage):
    """Appends SqlRecords as JSON Lines (.jsonl) using a background writer thread."""

    def __init__(self, path: str) -> None:
        self._path = path
        self._queue: queue.Queue[Optional[SqlRow]] = queue.Queue()
        self._thread = threading.Thread(target=self._writer, daemon=True)
        self._thread.start()

    def add_doc(self, doc: Any) -> None:
        """Enqueue a record for background writing."""
        self._queue.put(_sql_row(doc))

    def close(self) -> None:
        """Signal the writer thread to flush and stop."""
        self._queue.put(None)
        self._thread.join(timeout=5)

    def _writer(self) -> None:
        with open(self._path, "a", encoding="utf-8") as f:
            while True:
                row = self._queue.get()
                if row is None:
                    break
                record = {"table": row.table, **{k: _adapt_value(v) for k, v in row.columns.items()}}
                f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
                f.flush()
