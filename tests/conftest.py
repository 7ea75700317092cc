"""
Shared test fixtures.

The post store is tested against in-memory doubles of the remote store and
the extraction service (tests/fakes.py); nothing here talks to Supabase or
the network.
"""

import os
import sys
from pathlib import Path

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Settings are loaded at import time and need the Supabase credentials
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")

import pytest

from services.post_store import PostStore
from tests.fakes import OWNER_ID, FakeExtractionClient, FakeRemoteStore


# ===================
# FIXTURES
# ===================

@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def extractor() -> FakeExtractionClient:
    return FakeExtractionClient()


@pytest.fixture
def store(remote, extractor) -> PostStore:
    """
    Post store over the fakes, with instant timers.

    Usage:
        async def test_something(store, remote):
            seed(remote, id="p1")
            await store.hydrate()
    """
    return PostStore(
        remote=remote,
        extractor=extractor,
        owner_id=OWNER_ID,
        extraction_timeout=5,
        autosave_delay=0.01,
        auto_advance_delay=0,
    )


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client(store):
    """
    FastAPI test client over the fake-backed store.

    The lifespan is not run; the store is put on app.state directly.

    Usage:
        def test_endpoint(test_client, remote):
            response = test_client.get("/api/posts")
            assert response.status_code == 200
    """
    from fastapi.testclient import TestClient
    from main import app

    app.state.post_store = store
    app.state.live_sync = None
    return TestClient(app)
