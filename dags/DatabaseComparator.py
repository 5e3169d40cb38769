import json
import logging
from typing import Any, Dict, List, Optional, Sequence

# =====================================================================================
# Import necessary Airflow modules
# =====================================================================================
from airflow.exceptions import AirflowException

from local_online_sync.SyncConfig import SyncConfig
from local_online_sync.connections import AirflowConnectionProvider
from local_online_sync.errors import SchemaMismatchError, StoreError
from local_online_sync.registry import TableOrderRegistry

logger = logging.getLogger(__name__)

# ----------------------------- JSON/XCom helper -----------------------------
def _json_sanitize(val: Any) -> Any:
    """Ensure value is JSON-serializable (safe for Airflow XCom via SDK API)."""
    return json.loads(json.dumps(val, default=str))

# ============================== DatabaseComparator ===============================

class DatabaseComparator:
    """Compare every registry table between the local and the online database."""

    def __init__(self, registry: Optional[TableOrderRegistry] = None):
        self.registry = registry or TableOrderRegistry.default()
        self.mismatched_data: Dict[str, List[str]] = {}
        self.is_consistent = True

    # ---------- Column-by-column compare ----------
    def compare_table_columns(self, local, online, table: str,
                              columns: Sequence[str], order_by_cols: Sequence[str]) -> List[str]:
        logger.info("Column-level compare for %s", table)
        mismatches: List[str] = []
        for col in columns:
            local_hash = local.column_hash(table, col, order_by_cols)
            online_hash = online.column_hash(table, col, order_by_cols)
            if local_hash != online_hash:
                logger.error("  ❌ Column mismatch: %s.%s", table, col)
                mismatches.append(col)
            else:
                logger.info("  ✅ Column OK: %s.%s", table, col)
        return mismatches

    # ---------- One table ----------
    def compare_table(self, local, online, table: str) -> List[str]:
        """Return the list of issues found for ``table`` (empty when consistent)."""
        try:
            local_cols = local.column_names(table)
            online_cols = online.column_names(table)
        except SchemaMismatchError:
            logger.error("❌ Table %s does not exist in one of the databases.", table)
            local.rollback()
            online.rollback()
            return ["Table missing in one database"]

        if set(local_cols) != set(online_cols):
            logger.error("❌ Column schema mismatch for %s: local=%s online=%s", table, local_cols, online_cols)
            return ["Column schema differs between databases"]
        if not local_cols:
            return []

        local_cnt = local.row_count(table)
        online_cnt = online.row_count(table)
        logger.info("Row counts for %s -> local: %s, online: %s", table, local_cnt, online_cnt)
        if local_cnt != online_cnt:
            logger.error("❌ Row count mismatch for %s: local=%s, online=%s", table, local_cnt, online_cnt)
            return [f"Row count mismatch (local={local_cnt}, online={online_cnt})"]

        # first column is the key; it gives both sides the same row order
        order_by_cols = [local_cols[0]]
        local_hash = local.table_hash(table, local_cols, order_by_cols)
        online_hash = online.table_hash(table, local_cols, order_by_cols)
        logger.info("Hashes for %s -> local: %s, online: %s", table, local_hash, online_hash)
        if local_hash == online_hash:
            logger.info("✅ %s is consistent.", table)
            return []

        logger.error("❌ MISMATCH at table level for %s. Checking columns hash ...", table)
        mismatched_cols = self.compare_table_columns(local, online, table, local_cols, order_by_cols)
        return mismatched_cols or ["Unknown mismatch despite equal counts"]

    # ---------- Orchestration ----------
    def run_comparison(self, local, online) -> Dict[str, Any]:
        """
        Compare every table in registry order.

        Returns: {"mismatched_data": {table: [issues...]}, "is_consistent": bool}
        """
        self.mismatched_data = {}
        for spec in self.registry:
            try:
                issues = self.compare_table(local, online, spec.name)
            except StoreError as e:
                logger.exception("❌ Error comparing %s: %s", spec.name, e)
                local.rollback()
                online.rollback()
                issues = [f"ERROR: {e}"]
            self.mismatched_data[spec.name] = issues
        self.is_consistent = not any(self.mismatched_data.values())
        return _json_sanitize({
            "mismatched_data": self.mismatched_data,
            "is_consistent": self.is_consistent,
        })

# =====================================================================================
# Helper: build stores from config and run DatabaseComparator
# =====================================================================================

def run_db_comparison_callable(cfg_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Airflow-compatible callable comparing local and online for every configured table."""
    cfg = SyncConfig.from_dict(cfg_dict)
    provider = AirflowConnectionProvider(cfg.local_conn_id, cfg.online_conn_id, itersize=cfg.itersize)
    local = provider.get_local()
    try:
        online = provider.get_online()
    except Exception:
        local.close()
        raise
    try:
        return DatabaseComparator(cfg.registry()).run_comparison(local, online)
    finally:
        local.close()
        online.close()


def summarize_results_callable(payload: Dict[str, Any], *, raise_on_inconsistency: bool = False) -> str:
    """
    One-line summary of a run_comparison() payload
    ({"mismatched_data": {table: [issues...]}, "is_consistent": bool}).
    """
    payload = _json_sanitize(payload)
    mismatched = payload.get("mismatched_data") if isinstance(payload, dict) else None

    if not isinstance(mismatched, dict):
        logger.error("summarize_results_callable received invalid payload: %r", payload)
        raise AirflowException("Invalid mismatched_data payload (expected dict)")

    inconsistent: Dict[str, List[str]] = {
        str(tbl): [str(d) for d in issues] for tbl, issues in mismatched.items() if issues
    }

    logger.info("\n%s\n📊 CONSISTENCY CHECK SUMMARY\n%s", "=" * 50, "=" * 50)

    if not inconsistent:
        logger.info("🎉 All checked tables are consistent!")
        return "0 table(s) mismatched"

    n = len(inconsistent)
    logger.warning("🚨 Found inconsistencies in %d table(s):", n)
    for table, details in sorted(inconsistent.items()):
        logger.warning("  - Table: '%s'  (%d issue%s)", table, len(details), "" if len(details) == 1 else "s")
        for d in details:
            logger.warning("    • %s", d)
    summary = f"{n} table(s) mismatched"
    if raise_on_inconsistency:
        raise AirflowException(f"Database consistency check failed: {summary}")
    return summary
