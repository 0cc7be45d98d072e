"""
Pytest configuration and fixtures for the CaseMap backend.

This module provides:
- A fresh SQLite database per test (schema only, or seeded with the system vocabularies)
- Helpers to look up seeded roles and create entities and graphs
- Test client fixture for the FastAPI app, wired to the per-test database
"""
import os
import tempfile

import pytest
from fastapi.testclient import TestClient

# Keep the app's own startup away from any real database
os.environ.setdefault("CASEMAP_DB_PATH", os.path.join(tempfile.gettempdir(), "casemap-test.db"))
os.environ.setdefault("SEED_REGISTRIES_ON_STARTUP", "false")

from db_sqlite import connect, get_db, init_db  # noqa: E402
from main import app  # noqa: E402
from services_entities import create_entity  # noqa: E402
from services_graph_store import create_graph  # noqa: E402
from services_registries import get_role_by_name, seed_registries  # noqa: E402


@pytest.fixture
def db(tmp_path):
    """Empty schema in a temporary database file."""
    conn = connect(str(tmp_path / "casemap.db"))
    init_db(conn)
    yield conn
    conn.close()


@pytest.fixture
def seeded_db(db):
    """Database with system roles, relationship types and event types."""
    seed_registries(db)
    return db


@pytest.fixture
def role_id(seeded_db):
    """Look up a seeded role id by name: role_id("Detective")."""
    def _lookup(name: str) -> str:
        role = get_role_by_name(seeded_db, name)
        assert role is not None, f"role {name} not seeded"
        return role.id
    return _lookup


@pytest.fixture
def make_entity(seeded_db, role_id):
    def _make(name: str, role: str = "General Witness", **fields):
        return create_entity(seeded_db, name, role_id(role), **fields)
    return _make


@pytest.fixture
def graph(seeded_db):
    """A new graph with its root node."""
    return create_graph(seeded_db, "Commission of Inquiry", "Test investigation")


@pytest.fixture
def root_node(graph):
    return next(n for n in graph.nodes if n.kind == "root")


@pytest.fixture
def client(seeded_db):
    """
    Test client for the FastAPI app, with every request using the per-test
    database.

    Set raise_server_exceptions=False so that exceptions are caught by
    exception handlers and returned as responses (matching production behavior).
    """
    def _override_get_db():
        yield seeded_db

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.pop(get_db, None)
