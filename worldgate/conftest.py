# worldgate/conftest.py
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add repo root to PYTHONPATH
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from worldgate.features.entitlements.service import EntitlementGate
from worldgate.features.usage.store import InMemoryPlanStore, SqlPlanStore


ADMIN_KEY = "test-admin-key"


@pytest.fixture
def now():
    """Fixed clock for deterministic rate-window checks."""
    return datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return InMemoryPlanStore()


@pytest.fixture
def gate(store):
    return EntitlementGate(store, retention=100, fail_open=True, rate_window_seconds=60)


@pytest.fixture
def sql_store(tmp_path):
    """SQLite-backed store in a per-test file."""
    store = SqlPlanStore(f"sqlite:///{tmp_path / 'worldgate.db'}", retention=100)
    yield store
    store.engine.dispose()


@pytest.fixture
def admin_key(monkeypatch):
    from worldgate.core.config import settings

    monkeypatch.delenv("ADMIN_API_KEY", raising=False)
    monkeypatch.setattr(settings, "ADMIN_KEY", ADMIN_KEY)
    return ADMIN_KEY


@pytest.fixture
def client(gate, admin_key):
    from fastapi.testclient import TestClient
    from worldgate.main import create_app

    return TestClient(create_app(gate))
