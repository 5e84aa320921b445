import json
import os
import sqlite3
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from .exceptions import StorageError
from .models import NormalizedRecord, ProductStatus


class ProductStore(Protocol):
    def upsert_one(self, code: str, record: NormalizedRecord) -> bool:
        ...

    def upsert_many(self, items: Sequence[Tuple[str, NormalizedRecord]]) -> Tuple[int, int]:
        ...

    def find_one(self, code: str) -> Optional[NormalizedRecord]:
        ...

    def find_all(
        self, exclude_statuses: Iterable[ProductStatus] = ()
    ) -> List[NormalizedRecord]:
        ...

    def update_one(
        self,
        code: str,
        attributes: Optional[Mapping[str, Any]] = None,
        status: Optional[ProductStatus] = None,
    ) -> Optional[NormalizedRecord]:
        ...

    def count(self) -> int:
        ...


def _stored_copy(code: str, record: NormalizedRecord) -> NormalizedRecord:
    if record.code != code:
        raise StorageError(f"Key '{code}' does not match record code '{record.code}'")
    return record.model_copy(deep=True)


class InMemoryProductStore:
    """Dict-backed store; every operation holds the lock, so each upsert is atomic."""

    def __init__(self):
        self._rows: Dict[str, NormalizedRecord] = {}
        self._lock = threading.RLock()

    def upsert_one(self, code: str, record: NormalizedRecord) -> bool:
        stored = _stored_copy(code, record)
        with self._lock:
            inserted = code not in self._rows
            self._rows[code] = stored
        return inserted

    def upsert_many(self, items: Sequence[Tuple[str, NormalizedRecord]]) -> Tuple[int, int]:
        staged = [(code, _stored_copy(code, record)) for code, record in items]
        matched = inserted = 0
        with self._lock:
            for code, stored in staged:
                if code in self._rows:
                    matched += 1
                else:
                    inserted += 1
                self._rows[code] = stored
        return matched, inserted

    def find_one(self, code: str) -> Optional[NormalizedRecord]:
        with self._lock:
            row = self._rows.get(code)
            return row.model_copy(deep=True) if row is not None else None

    def find_all(
        self, exclude_statuses: Iterable[ProductStatus] = ()
    ) -> List[NormalizedRecord]:
        excluded = set(exclude_statuses)
        with self._lock:
            return [
                row.model_copy(deep=True)
                for row in self._rows.values()
                if row.status not in excluded
            ]

    def update_one(
        self,
        code: str,
        attributes: Optional[Mapping[str, Any]] = None,
        status: Optional[ProductStatus] = None,
    ) -> Optional[NormalizedRecord]:
        with self._lock:
            row = self._rows.get(code)
            if row is None:
                return None
            merged = dict(row.attributes)
            merged.update(attributes or {})
            updated = row.model_copy(
                update={"attributes": merged, "status": status or row.status},
                deep=True,
            )
            self._rows[code] = updated
            return updated.model_copy(deep=True)

    def count(self) -> int:
        with self._lock:
            return len(self._rows)


class SQLiteProductStore:
    """SQLite-backed store keyed by product code."""

    table = "products"

    def __init__(self, db_path: str):
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._init_table()

    def _init_table(self) -> None:
        with self._lock, self.conn:
            self.conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    code TEXT PRIMARY KEY,
                    attributes TEXT NOT NULL,
                    imported_at TEXT NOT NULL,
                    status TEXT NOT NULL
                );
                """
            )

    def _exists(self, code: str) -> bool:
        row = self.conn.execute(
            f"SELECT 1 FROM {self.table} WHERE code = ?", (code,)
        ).fetchone()
        return row is not None

    def _upsert(self, record: NormalizedRecord) -> None:
        self.conn.execute(
            f"""
            INSERT INTO {self.table} (code, attributes, imported_at, status)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(code) DO UPDATE SET
                attributes = excluded.attributes,
                imported_at = excluded.imported_at,
                status = excluded.status
            """,
            (
                record.code,
                json.dumps(record.attributes),
                record.imported_at.isoformat(),
                record.status.value,
            ),
        )

    def _to_record(self, row: sqlite3.Row) -> NormalizedRecord:
        return NormalizedRecord(
            code=row["code"],
            attributes=json.loads(row["attributes"]),
            imported_at=datetime.fromisoformat(row["imported_at"]),
            status=ProductStatus(row["status"]),
        )

    def upsert_one(self, code: str, record: NormalizedRecord) -> bool:
        stored = _stored_copy(code, record)
        try:
            with self._lock, self.conn:
                inserted = not self._exists(code)
                self._upsert(stored)
        except (sqlite3.Error, TypeError, ValueError) as exc:
            raise StorageError(f"Upsert of product {code} failed: {exc}") from exc
        return inserted

    def upsert_many(self, items: Sequence[Tuple[str, NormalizedRecord]]) -> Tuple[int, int]:
        staged = [_stored_copy(code, record) for code, record in items]
        matched = inserted = 0
        try:
            # one transaction for the whole batch; a failure rolls all of it back
            with self._lock, self.conn:
                for record in staged:
                    if self._exists(record.code):
                        matched += 1
                    else:
                        inserted += 1
                    self._upsert(record)
        except (sqlite3.Error, TypeError, ValueError) as exc:
            raise StorageError(f"Bulk upsert of {len(staged)} products failed: {exc}") from exc
        return matched, inserted

    def find_one(self, code: str) -> Optional[NormalizedRecord]:
        try:
            with self._lock:
                row = self.conn.execute(
                    f"SELECT * FROM {self.table} WHERE code = ?", (code,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Lookup of product {code} failed: {exc}") from exc
        return self._to_record(row) if row is not None else None

    def find_all(
        self, exclude_statuses: Iterable[ProductStatus] = ()
    ) -> List[NormalizedRecord]:
        excluded = [status.value for status in exclude_statuses]
        query = f"SELECT * FROM {self.table}"
        if excluded:
            placeholders = ", ".join("?" for _ in excluded)
            query += f" WHERE status NOT IN ({placeholders})"
        query += " ORDER BY code"
        try:
            with self._lock:
                rows = self.conn.execute(query, excluded).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Listing products failed: {exc}") from exc
        return [self._to_record(row) for row in rows]

    def update_one(
        self,
        code: str,
        attributes: Optional[Mapping[str, Any]] = None,
        status: Optional[ProductStatus] = None,
    ) -> Optional[NormalizedRecord]:
        try:
            with self._lock, self.conn:
                row = self.conn.execute(
                    f"SELECT * FROM {self.table} WHERE code = ?", (code,)
                ).fetchone()
                if row is None:
                    return None
                current = self._to_record(row)
                merged = dict(current.attributes)
                merged.update(attributes or {})
                self.conn.execute(
                    f"UPDATE {self.table} SET attributes = ?, status = ? WHERE code = ?",
                    (json.dumps(merged), (status or current.status).value, code),
                )
        except (sqlite3.Error, TypeError, ValueError) as exc:
            raise StorageError(f"Update of product {code} failed: {exc}") from exc
        return current.model_copy(
            update={"attributes": merged, "status": status or current.status}
        )

    def count(self) -> int:
        try:
            with self._lock:
                row = self.conn.execute(f"SELECT COUNT(*) AS c FROM {self.table}").fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Counting products failed: {exc}") from exc
        return row["c"]

    def close(self) -> None:
        self.conn.close()


def create_store(backend: str, path: str) -> ProductStore:
    backend = backend.lower()
    if backend == "sqlite":
        return SQLiteProductStore(path)
    return InMemoryProductStore()
