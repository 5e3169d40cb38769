from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Tuple

import psycopg2
import psycopg2.errors
import psycopg2.extensions
import psycopg2.extras as extras
from psycopg2 import sql

from local_online_sync.TableSpec import ColumnDescriptor
from local_online_sync.errors import DuplicateKeyError, SchemaMismatchError, WriteError
from local_online_sync.statements import Statement, _table_ident, select_all

LOG = logging.getLogger(__name__)

_EMPTY_MD5 = "d41d8cd98f00b204e9800998ecf8427e"

_SCHEMA_ERRORS = (
    psycopg2.errors.UndefinedTable,
    psycopg2.errors.UndefinedColumn,
    psycopg2.errors.DatatypeMismatch,
    psycopg2.errors.InvalidTextRepresentation,
)

# ============================== Row cursor ===============================

class PgRowCursor:
    """
    Streams every row of one table through a named (server-side) cursor.

    Column metadata is read from the result set itself, so it is available
    once the first page has been fetched, even for an empty table.
    """

    def __init__(self, store: "PgStore", table: str, itersize: int):
        self._store = store
        self.table = table
        self._itersize = itersize
        with store._translate("read", table):
            self._cur = store.connection.cursor(name="local_online_sync_read")
            self._cur.itersize = itersize
            self._cur.execute(select_all(table).to_sql())
            self._first: List[tuple] = self._cur.fetchmany(itersize)
            description = self._cur.description or ()
        self.columns: Tuple[ColumnDescriptor, ...] = tuple(
            ColumnDescriptor(name=d[0], position=i) for i, d in enumerate(description, start=1)
        )
        LOG.debug("Opened read cursor on %s.%s columns=%s", store.name, table, [c.name for c in self.columns])

    def __iter__(self) -> Iterator[tuple]:
        page, self._first = self._first, []
        while page:
            for row in page:
                yield tuple(row)
            with self._store._translate("read", self.table):
                page = self._cur.fetchmany(self._itersize)

    def close(self) -> None:
        try:
            self._cur.close()
        finally:
            # end the read transaction on the source
            self._store.commit()

    def __enter__(self) -> "PgRowCursor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self._store.rollback()
            return
        self.close()

# ============================== Store ===============================

class PgStore:
    """Thin wrapper over one psycopg2 connection (local or online side)."""

    def __init__(self, connection, name: str, *, itersize: int = 2000, identity: str | None = None):
        self.connection = connection
        self.name = name
        self.identity = identity or name
        self.itersize = itersize

    def __repr__(self) -> str:
        return f"PgStore(name={self.name!r}, identity={self.identity!r})"

    # ------------------------ Error translation ------------------------

    @contextmanager
    def _translate(self, action: str, table: str | None = None):
        try:
            yield
        except psycopg2.errors.UniqueViolation as e:
            raise DuplicateKeyError(
                f"Duplicate key on {self.name}.{table} during {action}: {e}", store=self.name, table=table
            ) from e
        except _SCHEMA_ERRORS as e:
            raise SchemaMismatchError(
                f"Schema mismatch on {self.name}.{table} during {action}: {e}", store=self.name, table=table
            ) from e
        except psycopg2.Error as e:
            raise WriteError(
                f"{action} failed on {self.name}.{table}: {e}", store=self.name, table=table
            ) from e

    # ------------------------ Reads ------------------------

    def read_table(self, table: str) -> PgRowCursor:
        return PgRowCursor(self, table, self.itersize)

    def scalar(self, statement: Statement, params: Sequence[Any] = ()) -> Any:
        with self._translate(statement.kind, statement.table):
            with self.connection.cursor() as c:
                c.execute(statement.to_sql(), tuple(params) or None)
                row = c.fetchone()
        return row[0] if row else None

    # ------------------------ Writes ------------------------

    def execute(self, statement: Statement, params: Sequence[Any] = ()) -> int:
        if LOG.isEnabledFor(logging.DEBUG):
            LOG.debug("Executing %s on %s.%s", statement.kind, self.name, statement.table)
        with self._translate(statement.kind, statement.table):
            with self.connection.cursor() as c:
                c.execute(statement.to_sql(), tuple(params) or None)
                return c.rowcount

    def execute_batch(self, statement: Statement, rows: Sequence[Sequence[Any]]) -> None:
        """One round-trip for the whole page (multi-row VALUES)."""
        if not rows:
            return
        t0 = time.perf_counter()
        with self._translate(statement.kind, statement.table):
            with self.connection.cursor() as c:
                extras.execute_values(c, statement.to_sql(), rows, page_size=len(rows))
        LOG.debug("Batch of %d rows into %s.%s (%.3fs)", len(rows), self.name, statement.table,
                  time.perf_counter() - t0)

    @contextmanager
    def savepoint(self, name: str = "local_online_sync_row"):
        """Scope a statement so its failure does not abort the whole transaction."""
        ident = sql.Identifier(name)
        with self._translate("savepoint"):
            with self.connection.cursor() as c:
                c.execute(sql.SQL("SAVEPOINT {}").format(ident))
        try:
            yield
        except Exception:
            with self._translate("rollback to savepoint"):
                with self.connection.cursor() as c:
                    c.execute(sql.SQL("ROLLBACK TO SAVEPOINT {}").format(ident))
            raise
        with self._translate("release savepoint"):
            with self.connection.cursor() as c:
                c.execute(sql.SQL("RELEASE SAVEPOINT {}").format(ident))

    # ------------------------ Transactions ------------------------

    def commit(self) -> None:
        with self._translate("commit"):
            self.connection.commit()

    def rollback(self) -> None:
        try:
            self.connection.rollback()
        except psycopg2.Error:
            LOG.warning("Rollback failed on %s", self.name, exc_info=True)

    def close(self) -> None:
        try:
            self.connection.close()
        except psycopg2.Error:
            LOG.warning("Closing %s connection failed", self.name, exc_info=True)

    # ------------------------ Referential integrity ------------------------

    def set_referential_integrity(self, enabled: bool) -> None:
        """
        Toggle FK enforcement for this session via session_replication_role.
        The SET is committed right away so a later rollback cannot undo it.
        Unfinished work on the connection is rolled back first, never
        committed along with the SET.
        """
        status = self.connection.get_transaction_status()
        if status != psycopg2.extensions.TRANSACTION_STATUS_IDLE:
            LOG.warning("%s connection has an open transaction (status=%s); rolling back before toggling FK checks",
                        self.name, status)
            self.rollback()
        value = sql.SQL("DEFAULT") if enabled else sql.Literal("replica")
        with self._translate("toggle referential integrity"):
            with self.connection.cursor() as c:
                c.execute(sql.SQL("SET session_replication_role = {}").format(value))
            self.connection.commit()
        LOG.info("Referential integrity %s on %s", "enabled" if enabled else "disabled", self.name)

    def referential_integrity_enabled(self) -> bool:
        with self._translate("read referential integrity state"):
            with self.connection.cursor() as c:
                c.execute("SHOW session_replication_role")
                role = c.fetchone()[0]
            self.connection.commit()
        return str(role).lower() != "replica"

    # ------------------------ Verification reads ------------------------

    def column_names(self, table: str) -> List[str]:
        with self._translate("read columns", table):
            with self.connection.cursor() as c:
                c.execute(sql.SQL("SELECT * FROM {tbl} LIMIT 0").format(tbl=_table_ident(table)))
                cols = [d[0] for d in c.description]
            self.connection.commit()
        return cols

    def row_count(self, table: str) -> int:
        with self._translate("count", table):
            with self.connection.cursor() as c:
                c.execute(sql.SQL("SELECT COUNT(*) FROM {tbl}").format(tbl=_table_ident(table)))
                cnt = int(c.fetchone()[0])
            self.connection.commit()
        return cnt

    def table_hash(self, table: str, columns: Sequence[str], order_by: Sequence[str]) -> Optional[str]:
        """md5 over every row's text form, aggregated in ``order_by`` order."""
        concat = sql.SQL(" || '||' || ").join(
            sql.SQL("COALESCE({}::text, 'NULL')").format(sql.Identifier(c)) for c in columns
        )
        q = sql.SQL(
            "SELECT md5(string_agg(md5({concat}), '' ORDER BY {ob})) FROM {tbl}"
        ).format(
            concat=concat,
            ob=sql.SQL(", ").join(sql.Identifier(c) for c in order_by),
            tbl=_table_ident(table),
        )
        with self._translate("hash", table):
            with self.connection.cursor() as c:
                c.execute(q)
                row = c.fetchone()
            self.connection.commit()
        return row[0] if row and row[0] else _EMPTY_MD5

    def column_hash(self, table: str, column: str, order_by: Sequence[str]) -> Optional[str]:
        q = sql.SQL(
            "SELECT md5(string_agg(COALESCE({col}::text, 'NULL'), '' ORDER BY {ob})) FROM {tbl}"
        ).format(
            col=sql.Identifier(column),
            ob=sql.SQL(", ").join(sql.Identifier(c) for c in order_by),
            tbl=_table_ident(table),
        )
        with self._translate("hash column", table):
            with self.connection.cursor() as c:
                c.execute(q)
                row = c.fetchone()
            self.connection.commit()
        return row[0] if row and row[0] else _EMPTY_MD5
