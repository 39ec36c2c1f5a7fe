"""Pytest configuration.

The application reads its settings at import time, so the environment is
pointed at a throwaway data directory with push disabled before any
``pushfeed`` module is imported.
"""
import os
import tempfile
import uuid

import pytest

os.environ["DATA_PATH"] = tempfile.mkdtemp(prefix="pushfeed-tests-")
os.environ["PUSH_PROVIDER"] = "disabled"
os.environ.pop("DATABASE_URL", None)


@pytest.fixture
def db_path(tmp_path):
    """Path of a fresh SQLite database file for one test."""
    return tmp_path / "pushfeed.db"


@pytest.fixture
def user_id():
    """A user id no other test uses."""
    return f"user-{uuid.uuid4().hex[:12]}"
