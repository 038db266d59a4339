"""Tests for the optional EXPLAIN hook."""

import json

import pytest
from sqlalchemy import create_engine

from querydoctor.explain import (
    ExplainAdapter,
    MySQLExplainAdapter,
    PostgresExplainAdapter,
    bind_positional,
    get_explain_adapter,
    is_explainable,
    parse_mysql_explain,
    parse_postgres_explain,
)
from querydoctor.models import SCAN_FULL, SCAN_INDEX, SCAN_REF


@pytest.fixture
def sqlite_engine():
    engine = create_engine("sqlite://")
    yield engine
    engine.dispose()


class TestHelpers:
    def test_is_explainable(self):
        assert is_explainable("SELECT * FROM users")
        assert is_explainable("  update users set name = ?")
        assert not is_explainable("CREATE TABLE t (id int)")
        assert not is_explainable("PRAGMA table_info(t)")

    def test_bind_positional(self):
        assert bind_positional("select * from t where a = ? and b = ?", [1, "x"]) == (
            "select * from t where a = :p0 and b = :p1",
            {"p0": 1, "p1": "x"},
        )


class TestParseMySQLExplain:
    """Reducing MySQL EXPLAIN rows."""

    def test_full_scan_with_filesort(self):
        result = parse_mysql_explain([{
            "id": 1,
            "select_type": "SIMPLE",
            "table": "users",
            "type": "ALL",
            "possible_keys": None,
            "key": None,
            "rows": 5000,
            "Extra": "Using where; Using filesort",
        }])

        assert result.scan_type == SCAN_FULL
        assert result.is_full_scan
        assert result.possible_keys == ()
        assert not result.uses_index
        assert result.estimated_rows == 5000
        assert result.extra == ("Using where", "Using filesort")
        assert result.has_filesort
        assert not result.has_temporary_table

    def test_ref_lookup(self):
        result = parse_mysql_explain([{
            "type": "eq_ref",
            "possible_keys": "idx_user, idx_user_created",
            "key": "idx_user",
            "rows": 1,
            "Extra": "",
        }])

        assert result.scan_type == SCAN_REF
        assert result.possible_keys == ("idx_user", "idx_user_created")
        assert result.used_key == "idx_user"
        assert result.extra == ()

    def test_null_strings(self):
        result = parse_mysql_explain([{"type": "index", "possible_keys": "NULL", "key": "NULL"}])
        assert result.scan_type == SCAN_INDEX
        assert result.used_key is None
        assert result.estimated_rows == 0

    def test_raw_rows_kept(self):
        rows = [{"type": "ALL", "table": "a"}, {"type": "ref", "table": "b"}]
        assert parse_mysql_explain(rows).raw == {"rows": rows}

    def test_no_rows(self):
        assert parse_mysql_explain([]) is None


class TestParsePostgresExplain:
    """Reducing EXPLAIN (FORMAT JSON) plans."""

    def test_seq_scan_from_json_text(self):
        plan = json.dumps([{
            "Plan": {
                "Node Type": "Seq Scan",
                "Relation Name": "users",
                "Plan Rows": 1200,
                "Filter": "(email = 'x'::text)",
            }
        }])
        result = parse_postgres_explain(plan)

        assert result.scan_type == SCAN_FULL
        assert result.estimated_rows == 1200
        assert result.extra == ("Using where",)

    def test_index_scan(self):
        result = parse_postgres_explain([{
            "Plan": {"Node Type": "Index Scan", "Index Name": "users_pkey", "Plan Rows": 1}
        }])

        assert result.scan_type == SCAN_INDEX
        assert result.used_key == "users_pkey"
        assert result.possible_keys == ("users_pkey",)

    def test_sort_over_scan(self):
        result = parse_postgres_explain([{
            "Plan": {
                "Node Type": "Sort",
                "Sort Key": ["created_at DESC"],
                "Plans": [{"Node Type": "Seq Scan", "Relation Name": "events"}],
            }
        }])

        assert result.scan_type == "sort"
        assert result.has_filesort

    def test_hash_join_uses_temporary(self):
        result = parse_postgres_explain([{
            "Plan": {
                "Node Type": "Hash Join",
                "Plans": [{"Node Type": "Seq Scan"}, {"Node Type": "Hash"}],
            }
        }])

        assert result.scan_type == "hash_join"
        assert result.extra == ("Using temporary",)

    def test_empty_plan(self):
        assert parse_postgres_explain([]) is None


class TestAdapters:
    """Engine-backed adapters."""

    def test_adapters_satisfy_protocol(self, sqlite_engine):
        assert isinstance(MySQLExplainAdapter(sqlite_engine), ExplainAdapter)
        assert isinstance(PostgresExplainAdapter(sqlite_engine), ExplainAdapter)

    def test_supports(self, sqlite_engine):
        assert MySQLExplainAdapter(sqlite_engine).supports("MariaDB")
        assert PostgresExplainAdapter(sqlite_engine).supports("postgresql")
        assert not PostgresExplainAdapter(sqlite_engine).supports("sqlite")

    def test_no_adapter_for_sqlite(self, sqlite_engine):
        assert get_explain_adapter(sqlite_engine) is None

    def test_non_dml_not_explained(self, sqlite_engine):
        assert MySQLExplainAdapter(sqlite_engine).explain("CREATE TABLE t (id int)") is None

    def test_failure_returns_none(self, sqlite_engine):
        adapter = PostgresExplainAdapter(sqlite_engine)
        assert adapter.explain("SELECT * FROM missing WHERE id = ?", [1]) is None
