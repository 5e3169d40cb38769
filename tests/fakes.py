"""
In-memory stand-ins for PgStore and the connection provider.

FakeStore interprets the structured Statement objects the writers build, so
tests exercise the real writer/orchestrator code without a PostgreSQL server.
"""

import hashlib
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from psycopg2 import sql

from local_online_sync import statements
from local_online_sync.TableSpec import ColumnDescriptor
from local_online_sync.errors import DatabaseConnectionError, DuplicateKeyError, SchemaMismatchError
from local_online_sync.registry import DEFAULT_TABLES

DEFAULT_COLUMNS = ("id", "name")


def render_sql(obj) -> str:
    """Flatten a psycopg2.sql composition to text without a database connection."""
    if isinstance(obj, str):
        return obj
    if isinstance(obj, sql.Composed):
        return "".join(render_sql(part) for part in obj.seq)
    if isinstance(obj, sql.Identifier):
        return ".".join(f'"{s}"' for s in obj.strings)
    if isinstance(obj, sql.Placeholder):
        return "%s"
    if isinstance(obj, sql.Literal):
        return repr(obj.wrapped)
    if isinstance(obj, sql.SQL):
        return obj.string
    raise TypeError(obj)


class FakeRowCursor:
    def __init__(self, store: "FakeStore", table: str, columns: Sequence[str], rows: List[tuple]):
        self._store = store
        self.table = table
        self.columns = tuple(ColumnDescriptor(name=c, position=i) for i, c in enumerate(columns, start=1))
        self._rows = list(rows)
        self.closed = False

    def __iter__(self):
        for row in self._rows:
            yield row

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.closed = True


class FakeTable:
    def __init__(self, columns: Sequence[str], rows: Iterable[tuple] = (), unique: bool = True):
        self.columns = tuple(columns)
        self.rows: List[tuple] = [tuple(r) for r in rows]
        self.unique = unique

    def keys(self) -> List:
        return [r[0] for r in self.rows]

    def find(self, key) -> Optional[int]:
        for i, r in enumerate(self.rows):
            if r[0] == key:
                return i
        return None


class FakeStore:
    def __init__(self, name: str, tables: Optional[Dict[str, FakeTable]] = None, identity: Optional[str] = None):
        self.name = name
        self.identity = identity or f"{name}_db"
        self.tables: Dict[str, FakeTable] = dict(tables or {})
        self.fk_enabled = True
        self.fk_toggles: List[bool] = []
        self.batches: List[Tuple[str, int]] = []
        self.written_tables: List[str] = []
        self.fail_on: Dict[str, Exception] = {}
        self.phantom_keys: Dict[str, set] = {}
        self.fail_toggle: Optional[Exception] = None
        self.commits = 0
        self.rollbacks = 0
        self.closed = 0

    # ------------------------ helpers for tests ------------------------

    def snapshot(self) -> Dict[str, List[tuple]]:
        return {name: sorted(t.rows, key=lambda r: r[0]) for name, t in self.tables.items()}

    def _table(self, name: str) -> FakeTable:
        if name not in self.tables:
            raise SchemaMismatchError(f"relation {name} does not exist", store=self.name, table=name)
        return self.tables[name]

    def _check_write(self, stmt) -> FakeTable:
        if stmt.table in self.fail_on:
            raise self.fail_on[stmt.table]
        table = self._table(stmt.table)
        if stmt.kind in (statements.UPSERT, statements.INSERT, statements.UPDATE) \
                and tuple(stmt.columns) != table.columns:
            raise SchemaMismatchError(f"column mismatch on {stmt.table}", store=self.name, table=stmt.table)
        if stmt.table not in self.written_tables:
            self.written_tables.append(stmt.table)
        return table

    # ------------------------ store interface ------------------------

    def read_table(self, table: str) -> FakeRowCursor:
        t = self._table(table)
        return FakeRowCursor(self, table, t.columns, t.rows)

    def scalar(self, stmt, params=()):
        assert stmt.kind == statements.COUNT_BY_KEY
        table = self._table(stmt.table)
        key = params[0]
        if key in self.phantom_keys.get(stmt.table, set()):
            return 0
        return sum(1 for k in table.keys() if k == key)

    def execute(self, stmt, params=()) -> int:
        table = self._check_write(stmt)
        params = tuple(params)
        if stmt.kind == statements.INSERT:
            if table.unique and table.find(params[0]) is not None:
                raise DuplicateKeyError(f"duplicate key {params[0]!r}", store=self.name, table=stmt.table)
            table.rows.append(params)
            return 1
        if stmt.kind == statements.UPDATE:
            key, values = params[-1], params[:-1]
            changed = 0
            for i, r in enumerate(table.rows):
                if r[0] == key:
                    table.rows[i] = (key,) + values
                    changed += 1
            return changed
        raise AssertionError(f"unexpected statement kind {stmt.kind}")

    def execute_batch(self, stmt, rows) -> None:
        table = self._check_write(stmt)
        assert stmt.kind == statements.UPSERT
        for row in rows:
            row = tuple(row)
            i = table.find(row[0])
            if i is None:
                table.rows.append(row)
            else:
                table.rows[i] = row
        self.batches.append((stmt.table, len(rows)))

    @contextmanager
    def savepoint(self, name: str = "sp"):
        snapshot = {n: list(t.rows) for n, t in self.tables.items()}
        try:
            yield
        except Exception:
            for n, rows in snapshot.items():
                self.tables[n].rows = rows
            raise

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def close(self) -> None:
        self.closed += 1

    def set_referential_integrity(self, enabled: bool) -> None:
        if self.fail_toggle is not None:
            raise self.fail_toggle
        self.fk_enabled = enabled
        self.fk_toggles.append(enabled)

    def referential_integrity_enabled(self) -> bool:
        return self.fk_enabled

    # ------------------------ verification reads ------------------------

    def column_names(self, table: str) -> List[str]:
        return list(self._table(table).columns)

    def row_count(self, table: str) -> int:
        return len(self._table(table).rows)

    def _ordered(self, table: FakeTable, order_by: Sequence[str]) -> List[tuple]:
        idx = [table.columns.index(c) for c in order_by]
        return sorted(table.rows, key=lambda r: tuple(r[i] for i in idx))

    def table_hash(self, table: str, columns: Sequence[str], order_by: Sequence[str]) -> str:
        t = self._table(table)
        idx = [t.columns.index(c) for c in columns]
        text = "|".join(repr(tuple(r[i] for i in idx)) for r in self._ordered(t, order_by))
        return hashlib.md5(text.encode()).hexdigest()

    def column_hash(self, table: str, column: str, order_by: Sequence[str]) -> str:
        t = self._table(table)
        i = t.columns.index(column)
        text = "|".join(repr(r[i]) for r in self._ordered(t, order_by))
        return hashlib.md5(text.encode()).hexdigest()


def make_store(name: str, data: Optional[Dict[str, Iterable[tuple]]] = None,
               columns: Sequence[str] = DEFAULT_COLUMNS, unique: bool = True) -> FakeStore:
    """A store holding every default registry table; ``data`` fills some of them."""
    data = data or {}
    tables = {t: FakeTable(columns, data.get(t, ()), unique=unique) for t, _ in DEFAULT_TABLES}
    for t, rows in data.items():
        if t not in tables:
            tables[t] = FakeTable(columns, rows, unique=unique)
    return FakeStore(name, tables)


class FakeProvider:
    def __init__(self, local: FakeStore, online: FakeStore, *, online_down: bool = False, local_down: bool = False):
        self.local = local
        self.online = online
        self.online_down = online_down
        self.local_down = local_down

    @property
    def pair_key(self):
        return (self.local.identity, self.online.identity)

    def get_local(self) -> FakeStore:
        if self.local_down:
            raise DatabaseConnectionError("local database unreachable")
        return self.local

    def get_online(self) -> FakeStore:
        if self.online_down:
            raise DatabaseConnectionError("online database unreachable")
        return self.online

    def get_preferred(self) -> FakeStore:
        try:
            return self.get_online()
        except DatabaseConnectionError:
            return self.get_local()
