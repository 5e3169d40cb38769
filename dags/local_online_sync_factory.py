from __future__ import annotations

import logging
from typing import Any, Dict

import pendulum
from airflow.decorators import dag, task
from airflow.exceptions import AirflowFailException
from airflow.models import Variable

from local_online_sync.SyncConfig import SyncConfig, config_from_catalog, load_catalog_file
from local_online_sync.alerts import format_sync_failure, send_discord_alert
from local_online_sync.connections import AirflowConnectionProvider
from local_online_sync.engine import SyncOrchestrator
from local_online_sync.errors import SyncError
from local_online_sync.outcomes import SyncDirection
from DatabaseComparator import run_db_comparison_callable, summarize_results_callable

log = logging.getLogger(__name__)

# ------------------------ Catalog helpers (DAG-layer) ------------------------
def _load_config() -> SyncConfig:
    catalog_path = Variable.get("LOCAL_ONLINE_SYNC_CATALOG", default_var="").strip()
    if not catalog_path:
        log.info("Variable 'LOCAL_ONLINE_SYNC_CATALOG' not set; using built-in table order")
        return SyncConfig()
    return config_from_catalog(load_catalog_file(catalog_path))


def _orchestrator(cfg: SyncConfig) -> SyncOrchestrator:
    provider = AirflowConnectionProvider(cfg.local_conn_id, cfg.online_conn_id, itersize=cfg.itersize)
    return SyncOrchestrator(provider, cfg.registry(), batch_size=cfg.batch_size)


def _fail_with_alert(cfg: SyncConfig, what: str, error: SyncError) -> None:
    if cfg.alert:
        send_discord_alert(format_sync_failure(what, cfg.local_conn_id, cfg.online_conn_id, error))
    raise AirflowFailException(f"{what} failed: {error}") from error


def _verify_and_alert(tcfg: Dict[str, Any]) -> None:
    cfg = SyncConfig.from_dict(tcfg)
    if not cfg.verify:
        log.info("Verification disabled for %s <-> %s", cfg.local_conn_id, cfg.online_conn_id)
        return
    out = run_db_comparison_callable(tcfg)
    summary = summarize_results_callable(out)
    if out.get("is_consistent", True):
        log.info("Comparison OK; no alerting.")
        return
    mismatches = {t: issues for t, issues in out.get("mismatched_data", {}).items() if issues}
    lines = [f"- `{t}`: {' | '.join(issues[:10])}" for t, issues in sorted(mismatches.items())]
    message = (
        f"❗️ **Database inconsistency detected** after sync\n"
        f"`{cfg.local_conn_id}` ↔ `{cfg.online_conn_id}`: {summary}\n" + "\n".join(lines)
    )
    if cfg.alert:
        send_discord_alert(message)
    else:
        log.warning(message)

# ------------------------ DAG creation helpers ------------------------
def _build_reconciled_dag(cfg: SyncConfig):
    tcfg: Dict[str, Any] = cfg.to_dict()

    @dag(
        dag_id="local_online_sync_reconciled",
        schedule=cfg.schedule,
        start_date=pendulum.datetime(2025, 8, 18, tz="UTC"),
        catchup=False,
        max_active_runs=1,
        tags=["local_online_sync", cfg.local_conn_id, cfg.online_conn_id],
        description=f"Two-way reconciled sync {cfg.local_conn_id} ↔ {cfg.online_conn_id}",
    )
    def sync_dag():

        @task
        def sync_reconciled() -> Dict[str, Any]:
            cfg_obj = SyncConfig.from_dict(tcfg)
            try:
                result = _orchestrator(cfg_obj).sync_both_directions_reconciled()
            except SyncError as e:
                _fail_with_alert(cfg_obj, "Two-way reconciled sync", e)
            log.info("Reconciled sync result: %s", result.as_dict())
            return result.as_dict()

        @task(do_xcom_push=False)
        def verify_consistency(_result: Dict[str, Any]) -> None:
            _verify_and_alert(tcfg)

        verify_consistency(sync_reconciled())

    return sync_dag()


def _build_bulk_dag(cfg: SyncConfig, direction: SyncDirection):
    tcfg: Dict[str, Any] = cfg.to_dict()
    direction_value = direction.value

    @dag(
        dag_id=f"local_online_sync_{direction.value}",
        schedule=None,
        start_date=pendulum.datetime(2025, 8, 18, tz="UTC"),
        catchup=False,
        max_active_runs=1,
        tags=["local_online_sync", "bulk_upsert", cfg.local_conn_id, cfg.online_conn_id],
        description=f"Bulk upsert sync {direction.label} ({cfg.local_conn_id} ↔ {cfg.online_conn_id})",
    )
    def sync_dag():

        @task
        def sync_bulk() -> Dict[str, Any]:
            cfg_obj = SyncConfig.from_dict(tcfg)
            d = SyncDirection(direction_value)
            try:
                result = _orchestrator(cfg_obj).sync_one_direction(d)
            except SyncError as e:
                _fail_with_alert(cfg_obj, f"{d.label} bulk sync", e)
            log.info("Bulk sync result: %s", result.as_dict())
            return result.as_dict()

        # one-way upserts leave target-only rows alone, so no equality check here
        sync_bulk()

    return sync_dag()

# ------------------------ Generate all DAGs from catalog ------------------------
_config = _load_config()
for _dag_obj in (
    _build_reconciled_dag(_config),
    _build_bulk_dag(_config, SyncDirection.LOCAL_TO_ONLINE),
    _build_bulk_dag(_config, SyncDirection.ONLINE_TO_LOCAL),
):
    globals()[_dag_obj.dag_id] = _dag_obj
