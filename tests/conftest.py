"""
Test configuration — sets required env vars before any imports.
"""

import os

import pytest

# Dummy env vars so Settings() is complete during test collection.
# No test talks to Supabase or a CRM; those clients are mocked.
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("ANALYTICS_STORE_BACKEND", "memory")


@pytest.fixture(autouse=True)
def _fresh_store():
    """Give every test its own store singleton."""
    from app.services.analytics.store import reset_analytics_store

    reset_analytics_store()
    yield
    reset_analytics_store()
