"""Shared fixtures: a temporary SQLite-backed document store."""

import pytest

from ledger_sync.clients.local import LocalDocumentStore
from ledger_sync.db import Database


@pytest.fixture
def db(tmp_path):
    """Create a temporary database."""
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


@pytest.fixture
def store(db):
    """Create a local document store over the temporary database."""
    return LocalDocumentStore(db)
