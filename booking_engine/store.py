"""
Generic relational store capability used by the engine.

Statements are built from lightweight ``table()``/``column()`` constructs
instead of the mapped tables, so a record can name columns the live schema
does not have: the database rejects them and the writer learns from the
error. Column types are borrowed from the models where they are known.
"""
import datetime
import logging
import uuid
from contextlib import asynccontextmanager

from sqlalchemy import (
    Boolean, Date, DateTime, Numeric, column, delete, insert, literal_column, select, table, update,
)
from sqlalchemy.exc import DBAPIError, InterfaceError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from .column_errors import detector_for_dialect
from . import models  # noqa: F401  registers the tables whose column types are borrowed
from .database import Base
from .errors import NetworkError, PersistenceError
from .values import coerce_date

logger = logging.getLogger("booking_engine")

NETWORK_ERROR_MARKERS = (
    "connection refused",
    "could not connect",
    "connection reset",
    "connection was closed",
    "server closed the connection",
    "network is unreachable",
    "name or service not known",
    "timed out",
    "timeout expired",
)


def is_network_error(error: BaseException) -> bool:
    """True when the failure is about reaching the store, not about the statement."""
    if isinstance(error, (OSError, InterfaceError)):
        return True
    if isinstance(error, DBAPIError):
        if error.connection_invalidated or isinstance(error.orig, OSError):
            return True
    message = str(error).lower()
    return any(marker in message for marker in NETWORK_ERROR_MARKERS)


def new_id() -> str:
    return str(uuid.uuid4())


class SqlStore:
    """
    Filtered select, maybe-single fetch, insert, update-by-id,
    delete-by-filter and bulk insert over an async SQLAlchemy engine.

    Each call runs in its own short transaction. Driver failures come out
    as ``NetworkError`` or ``PersistenceError``.
    """

    def __init__(self, engine: AsyncEngine, metadata=None):
        self.engine = engine
        self.metadata = metadata if metadata is not None else Base.metadata
        self.column_detector = detector_for_dialect(engine.dialect.name)

    # --- statement helpers ---

    def _table(self, table_name: str, names):
        known = self.metadata.tables.get(table_name)
        columns = []
        for name in dict.fromkeys(names):
            if known is not None and name in known.c:
                columns.append(column(name, known.c[name].type))
            else:
                columns.append(column(name))
        return table(table_name, *columns)

    @staticmethod
    def _where(tbl, filters: dict):
        clauses = []
        for name, value in filters.items():
            col = tbl.c[name]
            if isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(col.in_(list(value)))
            elif value is None:
                clauses.append(col.is_(None))
            else:
                clauses.append(col == value)
        return clauses

    def _normalize_row(self, table_name: str, row) -> dict:
        """
        ``SELECT *`` skips the result processors, so drivers hand back
        strings for dates on SQLite. Known columns are coerced to their
        Python types here.
        """
        data = dict(row)
        known = self.metadata.tables.get(table_name)
        if known is None:
            return data
        for name, value in data.items():
            if value is None or name not in known.c:
                continue
            col_type = known.c[name].type
            if isinstance(col_type, DateTime):
                if isinstance(value, str):
                    try:
                        data[name] = datetime.datetime.fromisoformat(value)
                    except ValueError:
                        pass
            elif isinstance(col_type, Date):
                data[name] = coerce_date(value)
            elif isinstance(col_type, Boolean):
                data[name] = bool(value)
            elif isinstance(col_type, Numeric) and not isinstance(value, bool):
                data[name] = float(value)
        return data

    def _select_all(self, table_name: str, filters: dict, order_by: str | None = None, descending: bool = False):
        names = [*filters]
        if order_by:
            names.append(order_by)
        tbl = self._table(table_name, names)
        stmt = select(literal_column("*")).select_from(tbl).where(*self._where(tbl, filters))
        if order_by:
            stmt = stmt.order_by(tbl.c[order_by].desc() if descending else tbl.c[order_by])
        return stmt

    @asynccontextmanager
    async def _begin(self, action: str):
        try:
            async with self.engine.begin() as conn:
                yield conn
        except (SQLAlchemyError, OSError) as e:
            if is_network_error(e):
                raise NetworkError(f"Network error while trying to {action}: {e}", cause=e) from e
            raise PersistenceError(f"Failed to {action}: {e}", cause=e) from e

    # --- capability ---

    async def read_columns(self, table_name: str) -> set[str]:
        """Reads at most one row and returns the column names the store reports."""
        async with self._begin(f"inspect {table_name}") as conn:
            result = await conn.execute(select(literal_column("*")).select_from(table(table_name)).limit(1))
            return set(result.keys())

    async def select(
            self,
            table_name: str,
            filters: dict | None = None,
            order_by: str | None = None,
            descending: bool = False,
            limit: int | None = None,
    ) -> list[dict]:
        stmt = self._select_all(table_name, filters or {}, order_by, descending)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._begin(f"read {table_name}") as conn:
            result = await conn.execute(stmt)
            return [self._normalize_row(table_name, row) for row in result.mappings().all()]

    async def maybe_single(self, table_name: str, filters: dict) -> dict | None:
        """First matching row, or None on zero rows (never an error)."""
        rows = await self.select(table_name, filters, limit=1)
        return rows[0] if rows else None

    async def insert(self, table_name: str, values: dict) -> dict:
        values = {"id": new_id(), **values}
        tbl = self._table(table_name, values)
        async with self._begin(f"insert into {table_name}") as conn:
            await conn.execute(insert(tbl).values(**values))
            result = await conn.execute(self._select_all(table_name, {"id": values["id"]}))
            row = result.mappings().first()
        return self._normalize_row(table_name, row) if row is not None else values

    async def update_by_id(self, table_name: str, row_id, values: dict) -> dict | None:
        """Updates one row and returns it, or None when the id matches nothing."""
        tbl = self._table(table_name, ["id", *values])
        async with self._begin(f"update {table_name}") as conn:
            if values:
                result = await conn.execute(update(tbl).where(tbl.c.id == row_id).values(**values))
                if result.rowcount == 0:
                    return None
            result = await conn.execute(self._select_all(table_name, {"id": row_id}))
            row = result.mappings().first()
        return self._normalize_row(table_name, row) if row is not None else None

    async def delete_where(self, table_name: str, filters: dict) -> int:
        if not filters:
            # An unfiltered delete would wipe the table
            raise PersistenceError(f"Refusing to delete from {table_name} without a filter")
        tbl = self._table(table_name, filters)
        async with self._begin(f"delete from {table_name}") as conn:
            result = await conn.execute(delete(tbl).where(*self._where(tbl, filters)))
            return result.rowcount

    async def bulk_insert(self, table_name: str, rows: list[dict]) -> list[dict]:
        if not rows:
            return []
        rows = [{"id": new_id(), **row} for row in rows]
        names = list(dict.fromkeys(name for row in rows for name in row))
        rows = [{name: row.get(name) for name in names} for row in rows]
        tbl = self._table(table_name, names)
        async with self._begin(f"insert into {table_name}") as conn:
            await conn.execute(insert(tbl), rows)
        return rows
