"""
Shared fixtures for the credits test suite.

Tests run against the in-memory credit store; the MongoDB store is
covered with mocks in test_mongo_store.py.
"""

import os

# Must be set before database/utils.auth are imported
os.environ["ENVIRONMENT"] = "test"
os.environ["CREDITS_STORE"] = "memory"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["JWT_ALGORITHM"] = "HS256"

from datetime import datetime, timedelta, timezone

import pytest

import database
from credits.memory_store import MemoryCreditStore


class FakeClock:
    """Settable clock passed to the services instead of utc_now."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    """Fresh memory store, also installed as the app-wide store."""
    memory_store = MemoryCreditStore()
    previous = database._credit_store
    database._credit_store = memory_store
    yield memory_store
    database._credit_store = previous
