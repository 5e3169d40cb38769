from __future__ import annotations

import logging
import threading
import time
from contextlib import ExitStack, contextmanager
from typing import Dict, Iterator, Optional, Tuple

from local_online_sync.constraints import ConstraintScope
from local_online_sync.errors import SyncAlreadyRunningError
from local_online_sync.outcomes import SyncDirection, SyncOutcome, SyncResult
from local_online_sync.progress import ProgressReporter, ProgressSink
from local_online_sync.registry import TableOrderRegistry
from local_online_sync.writers import DEFAULT_BATCH_SIZE, ReconciliationWriter, UpsertWriter

LOG = logging.getLogger(__name__)

BULK_UPSERT = "bulk_upsert"
RECONCILE = "reconcile"

# ============================== Single-flight guard ===============================

_RUN_LOCKS: Dict[Tuple[str, str], threading.Lock] = {}
_RUN_LOCKS_GUARD = threading.Lock()


@contextmanager
def _single_flight(pair_key: Tuple[str, str]) -> Iterator[None]:
    with _RUN_LOCKS_GUARD:
        lock = _RUN_LOCKS.setdefault(tuple(pair_key), threading.Lock())
    if not lock.acquire(blocking=False):
        raise SyncAlreadyRunningError(f"A sync is already running for {pair_key[0]} <-> {pair_key[1]}")
    try:
        yield
    finally:
        lock.release()

# ============================== Orchestrator ===============================

class SyncOrchestrator:
    """
    Drives a whole sync run over the table registry.

    Two strategies share the same registry, connection handling and
    constraint scope:

    * bulk upsert (:meth:`sync_one_direction`, :meth:`sync_both_directions`),
      one direction at a time, overwriting the target;
    * reconciliation (:meth:`sync_both_directions_reconciled`), both
      directions per table, insert-or-update by key.

    The first failing table aborts the run; FK checks are restored before the
    error is reported and re-raised.

    A ``sink`` given here also receives the provider's connection messages
    when the provider reports through a ``report`` attribute.
    """

    def __init__(self, provider, registry: Optional[TableOrderRegistry] = None, *,
                 sink: Optional[ProgressSink] = None, batch_size: int = DEFAULT_BATCH_SIZE,
                 logger: logging.Logger | None = None):
        self.provider = provider
        self.registry = registry or TableOrderRegistry.default()
        self.batch_size = batch_size
        self.log = logger or LOG
        self.report = ProgressReporter(sink, self.log)
        if sink is not None and hasattr(provider, "report"):
            # connection attempts go to the same sink as the sync itself
            provider.report = self.report

    # ------------------------ Connections ------------------------

    @contextmanager
    def resolve_connections(self):
        """Open the local and the online store; both are closed on exit."""
        with ExitStack() as stack:
            local = self.provider.get_local()
            stack.callback(local.close)
            online = self.provider.get_online()
            stack.callback(online.close)
            yield local, online

    def preferred_connection(self):
        """Single connection for ad-hoc use: online first, local as fallback."""
        return self.provider.get_preferred()

    # ------------------------ Bulk strategy ------------------------

    def sync_one_direction(self, direction) -> SyncResult:
        direction = SyncDirection(direction)
        writer = UpsertWriter(self.batch_size, logger=self.log)
        result = SyncResult(strategy=BULK_UPSERT, directions=(direction,))
        t0 = time.perf_counter()

        with _single_flight(self.provider.pair_key):
            self.report(f"🔄 Starting {direction.label} sync for all tables...")
            try:
                with self.resolve_connections() as (local, online):
                    stores = {"local": local, "online": online}
                    source, target = stores[direction.source], stores[direction.target]
                    with ConstraintScope(target, report=self.report, logger=self.log):
                        for spec in self.registry:
                            self._sync_table(writer, spec.name, source, target, direction, result)
            except Exception as e:
                self._fail(result, f"{direction.label} sync", e, t0)
                raise

        self._finish(result, t0)
        self.report(f"✅ {direction.label} sync completed for all tables! ({result.rows_processed} rows)")
        return result

    def sync_both_directions(self) -> SyncResult:
        """Bulk upsert Local → Online, then Online → Local."""
        result = SyncResult(strategy=BULK_UPSERT,
                            directions=(SyncDirection.LOCAL_TO_ONLINE, SyncDirection.ONLINE_TO_LOCAL))
        t0 = time.perf_counter()
        for direction in result.directions:
            result.outcomes.extend(self.sync_one_direction(direction).outcomes)
        self._finish(result, t0)
        return result

    # ------------------------ Reconciliation strategy ------------------------

    def sync_both_directions_reconciled(self) -> SyncResult:
        writer = ReconciliationWriter(logger=self.log)
        result = SyncResult(strategy=RECONCILE,
                            directions=(SyncDirection.LOCAL_TO_ONLINE, SyncDirection.ONLINE_TO_LOCAL))
        t0 = time.perf_counter()

        with _single_flight(self.provider.pair_key):
            self.report("🔄 Two-way sync started...")
            try:
                with self.resolve_connections() as (local, online):
                    stores = {"local": local, "online": online}
                    with ConstraintScope(local, online, report=self.report, logger=self.log):
                        for spec in self.registry:
                            self.report(f"➡️ Syncing table: {spec.name}")
                            # Local → Online finishes before Online → Local starts
                            for direction in result.directions:
                                self._sync_table(writer, spec.name, stores[direction.source],
                                                 stores[direction.target], direction, result)
            except Exception as e:
                self._fail(result, "Two-way sync", e, t0)
                raise

        self._finish(result, t0)
        self.report("✅ Two-way sync completed successfully!")
        return result

    # ------------------------ Internals ------------------------

    def _sync_table(self, writer, table: str, source, target, direction: SyncDirection,
                    result: SyncResult) -> SyncOutcome:
        self.report(f"  {direction.arrow} Syncing {table} ({direction.label})...")
        try:
            with source.read_table(table) as rows:
                outcome = writer.write(table, rows, target, direction)
        except Exception as e:
            result.outcomes.append(SyncOutcome(table=table, direction=direction, error=str(e)))
            raise
        result.outcomes.append(outcome)
        if result.strategy == RECONCILE:
            self.report(f"    ✓ {table} synced ({outcome.rows_inserted} new records, "
                        f"{outcome.rows_updated} updated)")
        else:
            self.report(f"    ✓ {table} synced ({outcome.rows_processed} rows)")
        return outcome

    def _fail(self, result: SyncResult, what: str, error: Exception, t0: float) -> None:
        result.succeeded = False
        result.error = str(error)
        result.elapsed = round(time.perf_counter() - t0, 3)
        self.log.error("%s failed after %d table(s)", what, len(result.outcomes), exc_info=True)
        self.report(f"❌ {what} failed: {error}")

    @staticmethod
    def _finish(result: SyncResult, t0: float) -> None:
        result.succeeded = all(o.succeeded for o in result.outcomes)
        result.elapsed = round(time.perf_counter() - t0, 3)
