"""Shared fixtures for the QueryDoctor test suite."""

import os
from pathlib import Path

import pytest

from querydoctor.config import reset_config
from querydoctor.storage import InMemoryStorage, SqliteStorage

TRACES_DIR = Path(__file__).parent / "fixtures" / "traces"


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Keep QUERYDOCTOR_* variables from the host out of every test."""
    for key in list(os.environ):
        if key.startswith("QUERYDOCTOR_"):
            monkeypatch.delenv(key)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def memory_storage():
    return InMemoryStorage()


@pytest.fixture
def sqlite_storage(tmp_path):
    storage = SqliteStorage(tmp_path / "doctor.sqlite", cleanup_every=0)
    yield storage
    storage.close()


@pytest.fixture
def traces_dir() -> Path:
    return TRACES_DIR
