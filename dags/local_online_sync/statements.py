from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence, Tuple

from psycopg2 import sql

LOG = logging.getLogger(__name__)

SELECT_ALL = "select_all"
UPSERT = "upsert"
INSERT = "insert"
UPDATE = "update"
COUNT_BY_KEY = "count_by_key"

# ============================== Helpers ===============================

def _table_ident(table: str) -> sql.Identifier:
    # "schema.table" -> "schema"."table"
    return sql.Identifier(*[p for p in table.split(".") if p])

def _idents(columns: Sequence[str]) -> sql.Composed:
    return sql.SQL(", ").join(sql.Identifier(c) for c in columns)

# ============================== Statement ===============================

@dataclass(frozen=True)
class Statement:
    """
    A parameterized statement described by its shape, not by its text.

    The key column is always ``columns[0]`` (first column of the source
    result set). ``to_sql()`` renders through ``psycopg2.sql`` so identifiers
    are quoted by the driver and values are always bound.
    """

    kind: str
    table: str
    columns: Tuple[str, ...] = ()

    @property
    def key(self) -> str | None:
        return self.columns[0] if self.columns else None

    @property
    def non_key_columns(self) -> Tuple[str, ...]:
        return self.columns[1:]

    def bind(self, row: Sequence[Any]) -> Tuple[Any, ...]:
        """Order row values the way this statement's placeholders expect them."""
        values = tuple(row)
        if self.kind == UPDATE:
            return values[1:] + values[:1]
        if self.kind == COUNT_BY_KEY:
            return values[:1]
        return values

    def to_sql(self) -> sql.Composed:
        tbl = _table_ident(self.table)
        if self.kind == SELECT_ALL:
            q = sql.SQL("SELECT * FROM {tbl}").format(tbl=tbl)
        elif self.kind == UPSERT:
            # "VALUES %s" is expanded by psycopg2.extras.execute_values
            if self.non_key_columns:
                action = sql.SQL("DO UPDATE SET {sets}").format(
                    sets=sql.SQL(", ").join(
                        sql.SQL("{c} = EXCLUDED.{c}").format(c=sql.Identifier(c))
                        for c in self.non_key_columns
                    )
                )
            else:
                action = sql.SQL("DO NOTHING")
            q = sql.SQL("INSERT INTO {tbl} ({cols}) VALUES %s ON CONFLICT ({key}) {action}").format(
                tbl=tbl, cols=_idents(self.columns), key=sql.Identifier(self.key), action=action,
            )
        elif self.kind == INSERT:
            q = sql.SQL("INSERT INTO {tbl} ({cols}) VALUES ({vals})").format(
                tbl=tbl,
                cols=_idents(self.columns),
                vals=sql.SQL(", ").join(sql.Placeholder() for _ in self.columns),
            )
        elif self.kind == UPDATE:
            q = sql.SQL("UPDATE {tbl} SET {sets} WHERE {key} = %s").format(
                tbl=tbl,
                sets=sql.SQL(", ").join(
                    sql.SQL("{c} = %s").format(c=sql.Identifier(c)) for c in self.non_key_columns
                ),
                key=sql.Identifier(self.key),
            )
        elif self.kind == COUNT_BY_KEY:
            q = sql.SQL("SELECT COUNT(*) FROM {tbl} WHERE {key} = %s").format(
                tbl=tbl, key=sql.Identifier(self.key),
            )
        else:
            raise ValueError(f"Unknown statement kind: {self.kind}")
        return q

# ============================== Builders ===============================

def select_all(table: str) -> Statement:
    return Statement(SELECT_ALL, table)


def upsert(table: str, columns: Sequence[str]) -> Statement:
    """Insert every column; on key conflict overwrite every non-key column."""
    if not columns:
        raise ValueError(f"Cannot build an upsert for {table} without columns")
    return Statement(UPSERT, table, tuple(columns))


def insert(table: str, columns: Sequence[str]) -> Statement:
    if not columns:
        raise ValueError(f"Cannot build an insert for {table} without columns")
    return Statement(INSERT, table, tuple(columns))


def update_by_key(table: str, columns: Sequence[str]) -> Statement | None:
    """SET every non-key column WHERE key = ?; None when there is nothing to set."""
    if len(columns) < 2:
        return None
    return Statement(UPDATE, table, tuple(columns))


def count_by_key(table: str, columns: Sequence[str]) -> Statement:
    if not columns:
        raise ValueError(f"Cannot build a key lookup for {table} without columns")
    return Statement(COUNT_BY_KEY, table, (columns[0],))
