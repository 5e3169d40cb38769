"""
Tests for the Airflow-backed connection provider (no real database).
"""

import pytest

pytest.importorskip("airflow")

import psycopg2  # noqa: E402

from local_online_sync.connections import AirflowConnectionProvider  # noqa: E402
from local_online_sync.errors import DatabaseConnectionError  # noqa: E402


class _Conn:
    def __init__(self, uri):
        self.uri = uri


def _provider(monkeypatch, down=(), messages=None):
    def connect(uri):
        if uri in down:
            raise psycopg2.OperationalError(f"could not connect to {uri}")
        return _Conn(uri)

    monkeypatch.setattr(AirflowConnectionProvider, "_resolve_uri",
                        lambda self, conn_id: f"postgresql://{conn_id}")
    sink = messages.append if messages is not None else None
    return AirflowConnectionProvider("local_db", "online_db", sink=sink, connect=connect)


def test_get_local_and_online(monkeypatch):
    provider = _provider(monkeypatch)
    local, online = provider.get_local(), provider.get_online()
    assert (local.name, local.connection.uri) == ("local", "postgresql://local_db")
    assert (online.name, online.identity) == ("online", "online_db")
    assert provider.pair_key == ("local_db", "online_db")


def test_preferred_is_online_when_reachable(monkeypatch):
    assert _provider(monkeypatch).get_preferred().name == "online"


def test_preferred_falls_back_to_local(monkeypatch):
    messages = []
    provider = _provider(monkeypatch, down={"postgresql://online_db"}, messages=messages)
    assert provider.get_preferred().name == "local"
    assert messages == [
        "Trying Online Database...",
        "Connecting to Online Database...",
        "⚠️ Online DB failed, switching to Local DB...",
        "Connecting to Local Database...",
    ]


def test_preferred_fails_when_both_are_down(monkeypatch):
    provider = _provider(monkeypatch, down={"postgresql://online_db", "postgresql://local_db"})
    with pytest.raises(DatabaseConnectionError, match="local"):
        provider.get_preferred()


def test_unknown_connection_id(monkeypatch):
    from airflow.exceptions import AirflowNotFoundException

    def missing(self, conn_id):
        raise AirflowNotFoundException(f"The conn_id `{conn_id}` isn't defined")

    monkeypatch.setattr(AirflowConnectionProvider, "_resolve_uri", missing)
    with pytest.raises(DatabaseConnectionError):
        AirflowConnectionProvider("local_db", "online_db").get_local()
