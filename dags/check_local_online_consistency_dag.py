from __future__ import annotations

import logging
from typing import Any, Dict, List

import pendulum

# Airflow
from airflow.decorators import dag, task

# Your modules
from DatabaseComparator import run_db_comparison_callable, summarize_results_callable
from local_online_sync.alerts import send_discord_alert
from local_online_sync_factory import _load_config

logger = logging.getLogger(__name__)

# ----------------------------- DAG factory -----------------------------

def _build_compare_dag(tcfg: Dict[str, Any]):
    """
    Build a DAG that:
      - compares every registry table between local and online
      - summarizes and alerts when something differs
    """
    local_conn_id, online_conn_id = tcfg["local_conn_id"], tcfg["online_conn_id"]

    @dag(
        dag_id="local_online_consistency_check",
        schedule="0 10 * * *",
        start_date=pendulum.datetime(2025, 8, 18, tz="UTC"),
        catchup=False,
        max_active_runs=1,
        tags=["local_online_sync", "database_comparison", local_conn_id, online_conn_id],
        description=f"Database comparison for {local_conn_id} ↔ {online_conn_id}",
    )
    def _dag():

        @task
        def run_db_compare() -> Dict[str, Any]:
            payload = run_db_comparison_callable(tcfg)
            logger.info("📦 Payload: %s", {"is_consistent": payload["is_consistent"],
                                          "count": sum(1 for v in payload["mismatched_data"].values() if v)})
            return payload

        @task
        def summarize(payload: Dict[str, Any]) -> str:
            return str(summarize_results_callable(payload, raise_on_inconsistency=False))

        @task(do_xcom_push=False)
        def alert_if_needed(payload: Dict[str, Any], summary: str) -> None:
            if bool(payload.get("is_consistent", True)):
                logger.info("🎉 Tables are consistent. No alert.")
                return
            if not tcfg.get("alert", True):
                logger.warning("Inconsistency found but alerting is disabled: %s", summary)
                return

            lines: List[str] = []
            for tbl, issues in sorted((payload.get("mismatched_data") or {}).items()):
                if not issues:
                    continue
                issues_txt = " | ".join(issues[:10]) + ("" if len(issues) <= 10 else " | …")
                lines.append(f"- `{tbl}`: {issues_txt}")

            body = "\n".join(lines) if lines else "No details."
            header = f"❗ **Database inconsistency detected**\n`{local_conn_id}` ↔ `{online_conn_id}`\n{summary}"
            if send_discord_alert(f"{header}\n{body}"):
                logger.info("🔔 Alert sent to Discord.")

        payload = run_db_compare()
        summary = summarize(payload)
        alert_if_needed(payload, summary)

    return _dag()


# ----------------------------- DAG registration -----------------------------

_dag_obj = _build_compare_dag(_load_config().to_dict())
globals()[_dag_obj.dag_id] = _dag_obj
