"""Tests for the SQLAlchemy capture listener, against a real in-memory engine."""

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from querydoctor.capture import QueryCaptureService
from querydoctor.config import Config
from querydoctor.integrations.sqlalchemy import (
    SQLAlchemyCaptureListener,
    normalize_bindings,
    normalize_placeholders,
)
from querydoctor.masking import MASKED, BindingMasker
from querydoctor.models import IssueType
from querydoctor.pipeline import AnalysisPipeline
from querydoctor.storage import InMemoryStorage


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", poolclass=StaticPool)
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT, password TEXT)"))
        conn.execute(text("CREATE TABLE posts (id INTEGER PRIMARY KEY, user_id INTEGER, title TEXT)"))
        for user_id in range(1, 7):
            conn.execute(
                text("INSERT INTO users (id, name, password) VALUES (:id, :name, :pw)"),
                {"id": user_id, "name": f"user{user_id}", "pw": "secret"},
            )
            conn.execute(
                text("INSERT INTO posts (user_id, title) VALUES (:user_id, :title)"),
                {"user_id": user_id, "title": "hello"},
            )
    yield engine
    engine.dispose()


@pytest.fixture
def capture():
    return QueryCaptureService(
        InMemoryStorage(),
        masker=BindingMasker.with_defaults(),
    )


@pytest.fixture
def listener(engine, capture):
    listener = SQLAlchemyCaptureListener(capture, connection_name="main")
    listener.attach(engine)
    yield listener
    listener.detach()


class TestNormalizePlaceholders:
    """DBAPI parameter styles are rewritten to ``?``."""

    def test_qmark_unchanged(self):
        assert normalize_placeholders("select * from t where a = ?") == (
            "select * from t where a = ?",
            [],
        )

    def test_format(self):
        assert normalize_placeholders("select * from t where a = %s and b = %s")[0] == (
            "select * from t where a = ? and b = ?"
        )

    def test_pyformat(self):
        assert normalize_placeholders("select * from t where a = %(a)s and b = %(b)s") == (
            "select * from t where a = ? and b = ?",
            ["a", "b"],
        )

    def test_numeric(self):
        assert normalize_placeholders("select * from t where a = $1 and b = $2")[0] == (
            "select * from t where a = ? and b = ?"
        )

    def test_named(self):
        assert normalize_placeholders("select * from t where a = :a and b = :b_2") == (
            "select * from t where a = ? and b = ?",
            ["a", "b_2"],
        )

    def test_postgres_cast_is_not_a_parameter(self):
        sql, names = normalize_placeholders("select a::text from t where b = :b")
        assert sql == "select a::text from t where b = ?"
        assert names == ["b"]

    def test_format_inside_literal_untouched(self):
        sql, _ = normalize_placeholders("select * from t where name like '%s%' and id = %s")
        assert sql == "select * from t where name like '%s%' and id = ?"

    def test_named_inside_literal_untouched(self):
        sql, names = normalize_placeholders("select ' :x' as label, \"a:b\" from t where id = :id")
        assert sql == "select ' :x' as label, \"a:b\" from t where id = ?"
        assert names == ["id"]


class TestNormalizeBindings:
    def test_mapping_in_placeholder_order(self):
        assert normalize_bindings({"b": 2, "a": 1}, ["a", "b"]) == [1, 2]

    def test_mapping_without_names(self):
        assert normalize_bindings({"a": 1}) == [1]

    def test_sequence(self):
        assert normalize_bindings((1, "x")) == [1, "x"]

    def test_none(self):
        assert normalize_bindings(None) == []


class TestSQLAlchemyCaptureListener:
    """End-to-end capture from engine events."""

    def test_attach_and_detach(self, engine, capture):
        listener = SQLAlchemyCaptureListener(capture)
        listener.attach(engine)
        assert listener.attached
        listener.detach()
        assert not listener.attached

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        assert capture.buffered_events == []

    def test_captures_executed_query(self, engine, capture, listener):
        capture.start("req-1", route="GET /users")
        with engine.connect() as conn:
            conn.execute(text("SELECT name FROM users WHERE id = :id"), {"id": 3})

        event = capture.buffered_events[0]
        assert event.sql == "SELECT name FROM users WHERE id = ?"
        assert event.bindings == (3,)
        assert event.connection == "main"
        assert event.context_id == "req-1"
        assert event.time_ms >= 0.0

    def test_stack_points_at_caller(self, engine, capture, listener):
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        frames = capture.buffered_events[0].stack_excerpt
        assert __file__ in [f.file for f in frames]

    def test_sensitive_bindings_masked(self, engine, capture, listener):
        with engine.connect() as conn:
            conn.execute(text("SELECT id FROM users WHERE password = :pw"), {"pw": "secret"})

        assert capture.buffered_events[0].bindings == (MASKED,)

    def test_lazy_loop_detected_as_n_plus_one(self, engine, capture, listener):
        capture.start("req-1", route="GET /users")
        with engine.connect() as conn:
            user_ids = [row.id for row in conn.execute(text("SELECT id FROM users"))]
            for user_id in user_ids:
                conn.execute(text("SELECT * FROM posts WHERE user_id = :uid"), {"uid": user_id})

        events = capture.buffered_events
        pipeline = AnalysisPipeline.from_config(
            Config(analyzers={"n_plus_one": {"min_total_ms": 0}})
        )
        issues = pipeline.analyze(events)
        assert IssueType.N_PLUS_ONE in {i.type for i in issues}
        capture.stop()
