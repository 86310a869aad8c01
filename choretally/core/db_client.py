"""SQLite database client wrapper with CRUD operations."""

import asyncio
import json
import logging
import re
import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import aiosqlite

from choretally.core.config import constants, settings


logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"


class DatabaseError(RuntimeError):
    """Raised when a storage operation fails."""


class RecordNotFoundError(KeyError):
    """Raised when a record id does not exist in a collection."""


def _validate_collection_name(collection: str) -> None:
    """Validate that a collection name contains only alphanumeric characters and underscores."""
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", collection):
        msg = f"Invalid collection name: {collection}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def sanitize_param(value: str | int | float | bool | None) -> str:
    """Escape a value for safe embedding in filter strings via json.dumps."""
    return json.dumps(str(value))[1:-1]


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


def _serialize_value(value: Any) -> Any:
    """Convert a Python value into something sqlite3 can bind."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, dict | list):
        return json.dumps(value)
    return value


def _parse_value(value: str, *, is_like: bool = False) -> str:
    """Bind a quoted filter value as text.

    Values are never coerced: ids such as ``"0042"`` must match verbatim.
    Numeric columns still compare correctly through SQLite type affinity.
    """
    if is_like:
        escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        return f"%{escaped}%"
    return value


def _get_sql_operator(op: str) -> str:
    """Map filter operator to SQL operator."""
    op_map = {
        "=": "=",
        "!=": "!=",
        ">": ">",
        "<": "<",
        ">=": ">=",
        "<=": "<=",
        "~": "LIKE",
    }
    sql_op = op_map.get(op)
    if not sql_op:
        msg = f"Unsupported operator: {op}"
        raise ValueError(msg)
    return sql_op


def _parse_single_comparison(comparison: str) -> tuple[str, str]:
    """Parse a single comparison expression into a SQL condition and parameter."""
    match = re.fullmatch(
        r"""(\w+)\s*(!=|>=|<=|=|>|<|~)\s*(['"])([^'"]*)\3""",
        comparison.strip(),
    )
    if not match:
        msg = f"Invalid filter syntax: {comparison}"
        raise ValueError(msg)

    field = match.group(1)
    op = match.group(2)
    raw_value = match.group(4)

    sql_op = _get_sql_operator(op)
    if sql_op == "LIKE":
        return f"{field} LIKE ? ESCAPE '\\'", _parse_value(raw_value, is_like=True)

    return f"{field} {sql_op} ?", _parse_value(raw_value)


def _parse_or_group(or_group: str) -> tuple[str, list[str]]:
    """Parse a parenthesized OR group into a SQL condition and parameters."""
    inner = or_group[1:-1]
    or_parts = [p.strip() for p in inner.split("||")]
    or_conditions = []
    or_params = []

    for part in or_parts:
        cond, value = _parse_single_comparison(part)
        or_conditions.append(cond)
        or_params.append(value)

    return f"({' OR '.join(or_conditions)})", or_params


def _split_and_conditions(filter_query: str) -> list[str]:
    """Split filter query by && while preserving parenthesized groups."""
    parts = []
    current = ""
    paren_depth = 0

    for char in filter_query:
        if char == "(":
            paren_depth += 1
        elif char == ")":
            paren_depth -= 1

        current += char

        if paren_depth == 0 and current.endswith("&&"):
            parts.append(current[:-2].strip())
            current = ""

    if current.strip():
        parts.append(current.strip())

    return parts


def parse_filter(filter_query: str) -> tuple[str, list[str]]:
    """Parse filter syntax into a SQL WHERE clause and parameter list.

    Supported syntax is ``field op "value"`` joined with ``&&``; a
    parenthesized group joins comparisons with ``||``.
    """
    if not filter_query:
        return "", []

    parts = _split_and_conditions(filter_query)
    conditions = []
    params = []

    for raw_part in parts:
        part = raw_part.strip()

        if part.startswith("(") and part.endswith(")"):
            cond, cond_params = _parse_or_group(part)
            conditions.append(cond)
            params.extend(cond_params)
        else:
            cond, value = _parse_single_comparison(part)
            conditions.append(cond)
            params.append(value)

    return " AND ".join(conditions), params


def _parse_sort(sort: str) -> str:
    """Validate a sort clause such as ``"period_start DESC, id ASC"``."""
    default = "id ASC"
    if not sort:
        return default

    clauses = []
    for raw_clause in sort.split(","):
        clause = raw_clause.strip()
        if not re.match(r"^[A-Za-z_][A-Za-z0-9_]*(\s+(ASC|DESC))?$", clause, re.IGNORECASE):
            logger.warning("Invalid sort parameter, using default", extra={"sort": sort})
            return default
        clauses.append(clause)
    return ", ".join(clauses)


def _row_to_dict(cursor: aiosqlite.Cursor, row: Any) -> dict[str, Any]:
    columns = [description[0] for description in cursor.description]
    return dict(zip(columns, row, strict=True))


class DBClient:
    """Async SQLite client bound to one connection.

    Services receive a client in their constructor; tests open one against
    ``":memory:"``. Every statement takes the connection exclusively, so a
    standalone write from one asyncio task never lands inside another task's
    open transaction.
    """

    def __init__(self, conn: aiosqlite.Connection, *, db_path: str = MEMORY_DB) -> None:
        self._conn = conn
        self.db_path = db_path
        self._tx_lock = asyncio.Lock()
        self._tx_owner: asyncio.Task[Any] | None = None

    @classmethod
    async def open(cls, db_path: str | None = None) -> "DBClient":
        """Open a connection to the given path (defaults to the configured database)."""
        if db_path == MEMORY_DB:
            path_str = MEMORY_DB
        else:
            path = get_db_path(db_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            path_str = str(path)

        conn = await aiosqlite.connect(path_str, isolation_level=None)
        await conn.execute("PRAGMA foreign_keys = ON")
        if path_str != MEMORY_DB:
            await conn.execute("PRAGMA journal_mode = WAL")

        logger.info("Opened SQLite connection", extra={"db_path": path_str})
        return cls(conn, db_path=path_str)

    async def close(self) -> None:
        """Close the underlying connection."""
        try:
            await self._conn.close()
            logger.info("Closed SQLite connection", extra={"db_path": self.db_path})
        except Exception as e:
            logger.warning("Error closing SQLite connection", extra={"error": str(e), "db_path": self.db_path})

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        """Hold the connection for the current asyncio task (re-entrant)."""
        current = asyncio.current_task()
        if self._tx_owner is not None and self._tx_owner is current:
            yield
            return

        async with self._tx_lock:
            self._tx_owner = current
            try:
                yield
            finally:
                self._tx_owner = None

    @asynccontextmanager
    async def _statement(self, query: str, params: Sequence[Any] = ()) -> AsyncIterator[aiosqlite.Cursor]:
        """Execute one statement and keep the connection until its rows are read."""
        async with self._exclusive():
            cursor = await self._conn.execute(query, params)
            yield cursor

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["DBClient"]:
        """Run the enclosed operations in one ``BEGIN IMMEDIATE`` transaction.

        Re-entrant within the same asyncio task; statements from other tasks
        wait until the transaction commits or rolls back.
        """
        if self._tx_owner is not None and self._tx_owner is asyncio.current_task():
            yield self
            return

        async with self._exclusive():
            await self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self
            except BaseException:
                await self._conn.rollback()
                raise
            await self._conn.commit()

    async def executescript(self, script: str) -> None:
        """Execute a multi-statement SQL script (schema creation)."""
        try:
            async with self._exclusive():
                await self._conn.executescript(script)
        except Exception as e:
            logger.error("executescript_failed", extra={"error": str(e)})
            msg = f"Failed to execute script: {e}"
            raise DatabaseError(msg) from e

    async def create_record(self, *, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        """Insert a new record and return it with its assigned id."""
        _validate_collection_name(collection)
        record = {"id": str(uuid.uuid4()), **data}
        try:
            columns = list(record.keys())
            columns_str = ", ".join(columns)
            placeholders_str = ", ".join("?" for _ in columns)
            values = [_serialize_value(record[key]) for key in columns]

            query = f"INSERT INTO {collection} ({columns_str}) VALUES ({placeholders_str})"  # noqa: S608 - collection is validated
            async with self._statement(query, values):
                pass
        except Exception as e:
            if isinstance(e, aiosqlite.OperationalError) and "no such table" in str(e):
                msg = f"Table '{collection}' does not exist. Call init_db() first."
                logger.error("Table not found", extra={"collection": collection})
                raise DatabaseError(msg) from e
            logger.error("create_record_failed", extra={"collection": collection, "error": str(e)})
            msg = f"Failed to create record in {collection}: {e}"
            raise DatabaseError(msg) from e

        logger.info("Created record", extra={"collection": collection, "record_id": record["id"]})
        return await self.get_record(collection=collection, record_id=record["id"])

    async def get_record(self, *, collection: str, record_id: str) -> dict[str, Any]:
        """Fetch a single record by ID, raising RecordNotFoundError if not found."""
        _validate_collection_name(collection)
        try:
            query = f"SELECT * FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
            async with self._statement(query, (record_id,)) as cursor:
                row = await cursor.fetchone()
                record = _row_to_dict(cursor, row) if row is not None else None
        except Exception as e:
            logger.error("get_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
            msg = f"Failed to get record from {collection}: {e}"
            raise DatabaseError(msg) from e

        if record is None:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        logger.debug("Retrieved record", extra={"collection": collection, "record_id": record_id})
        return record

    async def update_record(self, *, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Update a record by ID and return the updated record."""
        if not data:
            msg = "Empty update payload"
            raise ValueError(msg)

        _validate_collection_name(collection)
        try:
            set_clause = ", ".join(f"{key} = ?" for key in data)
            values = [_serialize_value(val) for val in data.values()]
            values.append(record_id)

            query = f"UPDATE {collection} SET {set_clause} WHERE id = ?"  # noqa: S608 - collection is validated
            async with self._statement(query, values) as cursor:
                updated = cursor.rowcount
        except Exception as e:
            logger.error(
                "update_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)}
            )
            msg = f"Failed to update record in {collection}: {e}"
            raise DatabaseError(msg) from e

        if updated == 0:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        logger.info("Updated record", extra={"collection": collection, "record_id": record_id})
        return await self.get_record(collection=collection, record_id=record_id)

    async def delete_record(self, *, collection: str, record_id: str) -> None:
        """Delete a record by ID, raising RecordNotFoundError if not found."""
        _validate_collection_name(collection)
        try:
            query = f"DELETE FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
            async with self._statement(query, (record_id,)) as cursor:
                deleted = cursor.rowcount
        except Exception as e:
            logger.error(
                "delete_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)}
            )
            msg = f"Failed to delete record from {collection}: {e}"
            raise DatabaseError(msg) from e

        if deleted == 0:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        logger.info("Deleted record", extra={"collection": collection, "record_id": record_id})

    async def delete_records(self, *, collection: str, filter_query: str) -> int:
        """Delete every record matching the filter and return how many were removed."""
        _validate_collection_name(collection)
        where_clause, params = parse_filter(filter_query)
        if not where_clause:
            msg = "delete_records requires a filter"
            raise ValueError(msg)

        try:
            query = f"DELETE FROM {collection} WHERE {where_clause}"  # noqa: S608 - collection is validated
            async with self._statement(query, params) as cursor:
                deleted = cursor.rowcount
        except Exception as e:
            logger.error("delete_records_failed", extra={"collection": collection, "error": str(e)})
            msg = f"Failed to delete records from {collection}: {e}"
            raise DatabaseError(msg) from e

        logger.info("Deleted records", extra={"collection": collection, "count": deleted})
        return deleted

    async def list_records(
        self,
        *,
        collection: str,
        page: int = 1,
        per_page: int = constants.DEFAULT_PER_PAGE_LIMIT,
        filter_query: str = "",
        sort: str = "",
    ) -> list[dict[str, Any]]:
        """List records with optional filtering, sorting, and pagination."""
        _validate_collection_name(collection)
        try:
            where_clause = ""
            params: list[Any] = []
            if filter_query:
                where_clause, params = parse_filter(filter_query)
                where_clause = f"WHERE {where_clause}"

            safe_sort = _parse_sort(sort)
            offset = (page - 1) * per_page

            query = f"SELECT * FROM {collection} {where_clause} ORDER BY {safe_sort} LIMIT ? OFFSET ?"  # noqa: S608 - collection is validated
            params.extend([per_page, offset])

            async with self._statement(query, params) as cursor:
                rows = await cursor.fetchall()
                records = [_row_to_dict(cursor, row) for row in rows]
        except ValueError:
            raise
        except Exception as e:
            logger.error("list_records_failed", extra={"collection": collection, "error": str(e)})
            msg = f"Failed to list records from {collection}: {e}"
            raise DatabaseError(msg) from e

        logger.debug("Listed records", extra={"collection": collection, "count": len(records)})
        return records

    async def list_all_records(self, *, collection: str, filter_query: str = "", sort: str = "") -> list[dict[str, Any]]:
        """List every record matching the filter, paging until a short page comes back.

        ``id`` is appended to the sort so rows with equal sort keys keep a
        stable order across pages.
        """
        full_sort = f"{sort}, id ASC" if sort else "id ASC"
        per_page = constants.MAX_PER_PAGE_LIMIT
        records: list[dict[str, Any]] = []
        page = 1
        while True:
            batch = await self.list_records(
                collection=collection, page=page, per_page=per_page, filter_query=filter_query, sort=full_sort
            )
            records.extend(batch)
            if len(batch) < per_page:
                return records
            page += 1

    async def get_first_record(self, *, collection: str, filter_query: str, sort: str = "") -> dict[str, Any] | None:
        """Return the first record matching the filter, or None."""
        records = await self.list_records(collection=collection, filter_query=filter_query, sort=sort, per_page=1)
        return records[0] if records else None

    async def count_records(self, *, collection: str, filter_query: str = "") -> int:
        """Count records matching the filter."""
        _validate_collection_name(collection)
        try:
            where_clause, params = parse_filter(filter_query)
            if where_clause:
                query = f"SELECT COUNT(*) FROM {collection} WHERE {where_clause}"  # noqa: S608 - collection is validated
            else:
                query = f"SELECT COUNT(*) FROM {collection}"  # noqa: S608 - collection is validated

            async with self._statement(query, params) as cursor:
                row = await cursor.fetchone()
        except ValueError:
            raise
        except Exception as e:
            logger.error(
                "count_records_failed", extra={"collection": collection, "filter_query": filter_query, "error": str(e)}
            )
            msg = f"Failed to count records in {collection}: {e}"
            raise DatabaseError(msg) from e

        return int(row[0]) if row else 0
