from __future__ import annotations

import logging
import time
from typing import List, Tuple

from local_online_sync import statements
from local_online_sync.errors import DuplicateKeyError
from local_online_sync.outcomes import SyncDirection, SyncOutcome

LOG = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100

# ============================== Bulk strategy ===============================

class UpsertWriter:
    """
    Copy a whole table from a row cursor into the target, overwriting rows
    whose key (first column) already exists. Never deletes.
    """

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE, logger: logging.Logger | None = None):
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.batch_size = batch_size
        self.log = logger or LOG

    def write(self, table: str, rows, target, direction: SyncDirection) -> SyncOutcome:
        t0 = time.perf_counter()
        outcome = SyncOutcome(table=table, direction=direction)
        columns = [c.name for c in rows.columns]
        if not columns:
            self.log.warning("No columns reported for %s; nothing to write", table)
            outcome.succeeded = True
            return outcome

        stmt = statements.upsert(table, columns)
        self.log.info("Upserting %s into %s (%d columns, batch_size=%d)",
                      table, target.name, len(columns), self.batch_size)
        page: List[Tuple] = []
        try:
            for row in rows:
                page.append(tuple(row))
                if len(page) >= self.batch_size:
                    self._flush(target, stmt, page, outcome)
                    page = []
            if page:
                self._flush(target, stmt, page, outcome)
        except BaseException as e:
            self.log.error("Upsert into %s.%s failed after %d rows", target.name, table,
                           outcome.rows_processed, exc_info=True)
            target.rollback()
            outcome.error = str(e) or type(e).__name__
            raise

        outcome.succeeded = True
        outcome.elapsed = round(time.perf_counter() - t0, 3)
        self.log.info("Upsert of %s done (rows=%d, batches=%d, %.3fs)",
                      table, outcome.rows_processed, outcome.batches, outcome.elapsed)
        return outcome

    def _flush(self, target, stmt, page: List[Tuple], outcome: SyncOutcome) -> None:
        t_batch = time.perf_counter()
        target.execute_batch(stmt, page)
        target.commit()
        outcome.rows_processed += len(page)
        outcome.batches += 1
        self.log.debug("Batch committed (batches=%d, rows=%d, took %.3fs)",
                       outcome.batches, outcome.rows_processed, time.perf_counter() - t_batch)

# ============================== Reconciliation strategy ===============================

class ReconciliationWriter:
    """
    Row-by-row sync in one direction: look the key (first column) up in the
    target, insert when absent, otherwise overwrite the non-key columns
    (last write wins). A duplicate-key error on insert means the row got there
    some other way; it is counted as already synchronized.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self.log = logger or LOG

    def write(self, table: str, rows, target, direction: SyncDirection) -> SyncOutcome:
        t0 = time.perf_counter()
        outcome = SyncOutcome(table=table, direction=direction)
        columns = [c.name for c in rows.columns]
        if not columns:
            self.log.warning("No columns reported for %s; nothing to reconcile", table)
            outcome.succeeded = True
            return outcome

        lookup = statements.count_by_key(table, columns)
        insert = statements.insert(table, columns)
        update = statements.update_by_key(table, columns)
        self.log.info("Reconciling %s into %s keyed on %r", table, target.name, lookup.key)

        try:
            for row in rows:
                row = tuple(row)
                count = target.scalar(lookup, lookup.bind(row)) or 0
                if count == 0:
                    try:
                        with target.savepoint():
                            target.execute(insert, insert.bind(row))
                    except DuplicateKeyError:
                        self.log.info("Key %r already present in %s.%s; skipping insert",
                                      row[0], target.name, table)
                        outcome.rows_already_synced += 1
                    else:
                        outcome.rows_inserted += 1
                elif update is not None:
                    target.execute(update, update.bind(row))
                    outcome.rows_updated += 1
                outcome.rows_processed += 1
            target.commit()
        except BaseException as e:
            # the table is all-or-nothing, interrupted runs included
            self.log.error("Reconciliation of %s.%s failed after %d rows", target.name, table,
                           outcome.rows_processed, exc_info=True)
            target.rollback()
            outcome.error = str(e) or type(e).__name__
            raise

        outcome.succeeded = True
        outcome.elapsed = round(time.perf_counter() - t0, 3)
        self.log.info(
            "Reconciliation of %s done (rows=%d, inserted=%d, updated=%d, already=%d, %.3fs)",
            table, outcome.rows_processed, outcome.rows_inserted, outcome.rows_updated,
            outcome.rows_already_synced, outcome.elapsed,
        )
        return outcome
