"""
Tests for DatabaseComparator and the summary helper.
"""

import pytest

pytest.importorskip("airflow")

from airflow.exceptions import AirflowException  # noqa: E402

from DatabaseComparator import DatabaseComparator, summarize_results_callable  # noqa: E402
from fakes import FakeStore, FakeTable, make_store  # noqa: E402
from local_online_sync.registry import TableOrderRegistry  # noqa: E402


def test_identical_databases_are_consistent():
    data = {"role": [(1, "admin"), (2, "cashier")]}
    out = DatabaseComparator().run_comparison(make_store("local", data), make_store("online", data))
    assert out["is_consistent"] is True
    assert all(issues == [] for issues in out["mismatched_data"].values())
    assert list(out["mismatched_data"]) == list(TableOrderRegistry.default().names())


def test_row_count_mismatch():
    out = DatabaseComparator().run_comparison(
        make_store("local", {"role": [(1, "a"), (2, "b")]}),
        make_store("online", {"role": [(1, "a")]}),
    )
    assert out["is_consistent"] is False
    assert out["mismatched_data"]["role"] == ["Row count mismatch (local=2, online=1)"]


def test_column_level_drill_down():
    out = DatabaseComparator().run_comparison(
        make_store("local", {"role": [(1, "a"), (2, "b")]}),
        make_store("online", {"role": [(1, "a"), (2, "CHANGED")]}),
    )
    assert out["mismatched_data"]["role"] == ["name"]


def test_schema_and_missing_table():
    registry = TableOrderRegistry.from_entries(["role", "type"])
    local = FakeStore("local", {"role": FakeTable(("id", "name"), []), "type": FakeTable(("id",), [])})
    online = FakeStore("online", {"role": FakeTable(("id", "label"), [])})
    out = DatabaseComparator(registry).run_comparison(local, online)
    assert out["mismatched_data"] == {
        "role": ["Column schema differs between databases"],
        "type": ["Table missing in one database"],
    }


def test_summary():
    payload = {"mismatched_data": {"role": ["name"], "type": []}, "is_consistent": False}
    assert summarize_results_callable(payload) == "1 table(s) mismatched"
    assert summarize_results_callable({"mismatched_data": {"role": []}, "is_consistent": True}) \
        == "0 table(s) mismatched"
    with pytest.raises(AirflowException):
        summarize_results_callable({"role": ["name"]})
    with pytest.raises(AirflowException):
        summarize_results_callable(payload, raise_on_inconsistency=True)
