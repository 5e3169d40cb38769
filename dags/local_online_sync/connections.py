from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

import psycopg2
from airflow.exceptions import AirflowNotFoundException
from airflow.hooks.base import BaseHook
from dotenv import load_dotenv

from local_online_sync.errors import DatabaseConnectionError
from local_online_sync.progress import ProgressReporter, ProgressSink
from local_online_sync.store import PgStore

LOG = logging.getLogger(__name__)


class AirflowConnectionProvider:
    """
    Opens the local and online databases from Airflow connection ids.

    Credentials live in Airflow Connections (or ``AIRFLOW_CONN_*`` variables,
    which may come from a ``.env`` file).
    """

    def __init__(self, local_conn_id: str, online_conn_id: str, *,
                 sink: Optional[ProgressSink] = None, itersize: int = 2000,
                 connect: Callable = psycopg2.connect, logger: logging.Logger | None = None):
        load_dotenv()
        self.local_conn_id = local_conn_id
        self.online_conn_id = online_conn_id
        self.itersize = itersize
        self._connect = connect
        self.log = logger or LOG
        self.report = ProgressReporter(sink, self.log)

    @property
    def pair_key(self) -> Tuple[str, str]:
        return (self.local_conn_id, self.online_conn_id)

    def _resolve_uri(self, conn_id: str) -> str:
        return BaseHook.get_connection(conn_id).get_uri()

    def _open(self, conn_id: str, name: str) -> PgStore:
        try:
            uri = self._resolve_uri(conn_id)
            conn = self._connect(uri)
        except (AirflowNotFoundException, psycopg2.Error) as e:
            self.log.error("Failed to connect to %s database (conn_id=%s): %s", name, conn_id, e)
            raise DatabaseConnectionError(f"Failed to connect to {name} database ({conn_id}): {e}") from e
        self.log.info("Connected to %s database (conn_id=%s)", name, conn_id)
        return PgStore(conn, name, itersize=self.itersize, identity=conn_id)

    def get_local(self) -> PgStore:
        self.report("Connecting to Local Database...")
        return self._open(self.local_conn_id, "local")

    def get_online(self) -> PgStore:
        self.report("Connecting to Online Database...")
        return self._open(self.online_conn_id, "online")

    def get_preferred(self) -> PgStore:
        """Online if reachable, otherwise local; only a local failure is fatal."""
        self.report("Trying Online Database...")
        try:
            return self.get_online()
        except DatabaseConnectionError:
            self.report("⚠️ Online DB failed, switching to Local DB...")
            return self.get_local()
