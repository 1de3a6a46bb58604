"""SQLite storage for permits and per-record extra fields."""

from __future__ import annotations

import os
import sqlite3
import threading
import time
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime, timezone
from typing import Any

DATABASE_FILENAME = "permit.db"

_COLUMNS = (
    "id",
    "permit_type",
    "holder_name",
    "holder_email",
    "permit_number",
    "issued_date",
    "expiry_date",
    "issuing_authority",
    "status",
    "cost",
    "notes",
    "created_at",
)
_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM permits"
_SEARCH_COLUMNS = (
    "permit_type",
    "holder_name",
    "holder_email",
    "permit_number",
    "issuing_authority",
    "notes",
)

_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS permits("
    "id TEXT PRIMARY KEY, permit_type TEXT NOT NULL, holder_name TEXT NOT NULL, "
    "holder_email TEXT DEFAULT '', permit_number TEXT DEFAULT '', "
    "issued_date TEXT DEFAULT '', expiry_date TEXT DEFAULT '', "
    "issuing_authority TEXT DEFAULT '', status TEXT DEFAULT '', "
    "cost REAL DEFAULT 0, notes TEXT DEFAULT '', "
    "created_at TEXT DEFAULT(datetime('now')))",
    "CREATE TABLE IF NOT EXISTS extras("
    "resource TEXT NOT NULL, record_id TEXT NOT NULL, "
    "data TEXT NOT NULL DEFAULT '{}', PRIMARY KEY(resource, record_id))",
)

_id_lock = threading.Lock()
_last_id = 0


def _generate_id() -> str:
    """Return a nanosecond timestamp id, strictly increasing within the process."""
    global _last_id
    with _id_lock:
        _last_id = max(time.time_ns(), _last_id + 1)
        return str(_last_id)


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class Permit:
    """One permit or license record."""

    id: str = ""
    permit_type: str = ""
    holder_name: str = ""
    holder_email: str = ""
    permit_number: str = ""
    issued_date: str = ""
    expiry_date: str = ""
    issuing_authority: str = ""
    status: str = ""
    cost: float = 0.0
    notes: str = ""
    created_at: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "Permit":
        """Build a permit from decoded JSON, ignoring values of the wrong type."""
        values: dict[str, Any] = {}
        for field in fields(cls):
            value = (data or {}).get(field.name)
            if field.name == "cost":
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    values["cost"] = float(value)
            elif isinstance(value, str):
                values[field.name] = value
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        """Return the record as a JSON-ready dictionary."""
        return asdict(self)

    @classmethod
    def _from_row(cls, row: tuple) -> "Permit":
        record = dict(zip(_COLUMNS, row))
        record["cost"] = float(record["cost"] or 0)
        for name in _COLUMNS:
            if name != "cost" and record[name] is None:
                record[name] = ""
        return cls(**record)


class Database:
    """A permit database stored as ``permit.db`` inside a data directory."""

    def __init__(self, data_dir: str | os.PathLike) -> None:
        os.makedirs(data_dir, mode=0o755, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            os.path.join(data_dir, DATABASE_FILENAME),
            check_same_thread=False,
            isolation_level=None,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        for statement in _SCHEMA:
            self._conn.execute(statement)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(sql, params)

    def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def create_permit(self, permit: Permit) -> Permit:
        """Store a new permit with a fresh id and timestamp and return it."""
        stored = replace(permit, id=_generate_id(), created_at=_now())
        placeholders = ", ".join("?" for _ in _COLUMNS)
        self._execute(
            f"INSERT INTO permits({', '.join(_COLUMNS)}) VALUES({placeholders})",
            tuple(getattr(stored, name) for name in _COLUMNS),
        )
        return stored

    def get_permit(self, permit_id: str) -> Permit | None:
        rows = self._query(f"{_SELECT} WHERE id=?", (permit_id,))
        return Permit._from_row(rows[0]) if rows else None

    def list_permits(self) -> list[Permit]:
        rows = self._query(f"{_SELECT} ORDER BY created_at DESC")
        return [Permit._from_row(row) for row in rows]

    def update_permit(self, permit: Permit) -> None:
        """Overwrite every editable column of the permit with the same id."""
        editable = [name for name in _COLUMNS if name not in ("id", "created_at")]
        assignments = ", ".join(f"{name}=?" for name in editable)
        self._execute(
            f"UPDATE permits SET {assignments} WHERE id=?",
            tuple(getattr(permit, name) for name in editable) + (permit.id,),
        )

    def delete_permit(self, permit_id: str) -> None:
        self._execute("DELETE FROM permits WHERE id=?", (permit_id,))

    def count_permits(self) -> int:
        return self._query("SELECT COUNT(*) FROM permits")[0][0]

    def search_permits(
        self, query: str, filters: Mapping[str, str] | None
    ) -> list[Permit]:
        """Find permits whose text fields contain ``query``, narrowed by status."""
        clauses = ["1=1"]
        params: list[Any] = []
        if query:
            clauses.append(
                "(" + " OR ".join(f"{name} LIKE ?" for name in _SEARCH_COLUMNS) + ")"
            )
            params.extend(f"%{query}%" for _ in _SEARCH_COLUMNS)
        status = (filters or {}).get("status")
        if status:
            clauses.append("status=?")
            params.append(status)
        rows = self._query(
            f"{_SELECT} WHERE {' AND '.join(clauses)} ORDER BY created_at DESC",
            tuple(params),
        )
        return [Permit._from_row(row) for row in rows]

    def get_extras(self, resource: str, record_id: str) -> str:
        """Return the JSON extras blob for a record, or ``"{}"`` if there is none."""
        rows = self._query(
            "SELECT data FROM extras WHERE resource=? AND record_id=?",
            (resource, record_id),
        )
        if not rows or not rows[0][0]:
            return "{}"
        return rows[0][0]

    def set_extras(self, resource: str, record_id: str, data: str) -> None:
        self._execute(
            "INSERT INTO extras(resource, record_id, data) VALUES(?, ?, ?) "
            "ON CONFLICT(resource, record_id) DO UPDATE SET data=excluded.data",
            (resource, record_id, data or "{}"),
        )

    def delete_extras(self, resource: str, record_id: str) -> None:
        self._execute(
            "DELETE FROM extras WHERE resource=? AND record_id=?",
            (resource, record_id),
        )

    def all_extras(self, resource: str) -> dict[str, str]:
        """Return every extras blob of a resource type, keyed by record id."""
        rows = self._query(
            "SELECT record_id, data FROM extras WHERE resource=?", (resource,)
        )
        return dict(rows)