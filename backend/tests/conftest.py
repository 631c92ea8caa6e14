"""
Pytest configuration and fixtures for the expiry worker tests

Provides an in-memory feed entry store that applies the same candidate
filter as the SQL query, a mocked payment instructions client and a
controllable clock.
"""

import pytest
from pathlib import Path
from unittest.mock import AsyncMock, Mock
import sys

# Add the app directory to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.services.expiry_reconciliation_service import ExpiryReconciliationService
from app.services.feed_entry_store import ExpiredEntry
from app.services.payment_instructions import PaymentInstructionsClient

FREE_PIID = "free-1"


class InMemoryEntryStore:
    """Stand-in for FeedEntryStore backed by a dict of entry rows"""

    def __init__(self):
        self.entries = {}
        self.fetch_calls = []
        self.update_calls = []
        self.failing_updates = set()

    def add(self, entry_id, expires_at, is_active=True, is_free=False,
            piid="p-default", cid=None, feed_id="feed-1", updated_at=0):
        self.entries[entry_id] = {
            "id": entry_id,
            "feed_id": feed_id,
            "cid": cid if cid is not None else f"c-{entry_id}",
            "piid": piid,
            "expires_at": expires_at,
            "is_active": is_active,
            "is_free": is_free,
            "title": f"Entry {entry_id}",
            "updated_at": updated_at,
        }
        return self.entries[entry_id]

    def snapshot(self):
        return {entry_id: dict(row) for entry_id, row in self.entries.items()}

    async def fetch_expired_entries(self, now, limit):
        self.fetch_calls.append((now, limit))
        rows = [
            row for row in self.entries.values()
            if row["expires_at"] is not None
            and row["expires_at"] <= now
            and row["is_active"]
            and not row["is_free"]
        ]
        rows.sort(key=lambda row: row["expires_at"])
        return [
            ExpiredEntry(
                id=row["id"],
                feed_id=row["feed_id"],
                cid=row["cid"],
                piid=row["piid"],
                expires_at=row["expires_at"],
                title=row["title"],
            )
            for row in rows[:limit]
        ]

    async def mark_entry_free(self, entry_id, free_piid, now):
        self.update_calls.append((entry_id, free_piid, now))
        if entry_id in self.failing_updates:
            raise RuntimeError(f"update failed for {entry_id}")
        if entry_id not in self.entries:
            return 0
        self.entries[entry_id].update(piid=free_piid, is_free=True, updated_at=now)
        return 1


class FixedClock:
    """Epoch-seconds clock the tests can move"""

    def __init__(self, now=200):
        self.now = now
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.now


@pytest.fixture
def store():
    """Provide an empty in-memory entry store"""
    return InMemoryEntryStore()


@pytest.fixture
def clock():
    """Provide a clock fixed at epoch 200"""
    return FixedClock(200)


@pytest.fixture
def payment_client():
    """Provide a mock payment instructions client whose map_cid succeeds"""
    client = Mock(spec=PaymentInstructionsClient)
    client.map_cid = AsyncMock(return_value=None)
    return client


@pytest.fixture
def make_service(store, payment_client, clock):
    """Factory for reconciliation services wired to the test doubles"""
    def _make(**overrides):
        kwargs = {
            "store": store,
            "payment_client": payment_client,
            "free_payment_instruction_id": FREE_PIID,
            "batch_size": 100,
            "timeout_ms": 5000,
            "clock": clock,
        }
        kwargs.update(overrides)
        return ExpiryReconciliationService(**kwargs)
    return _make


@pytest.fixture
def service(make_service):
    """Provide a reconciliation service with default test wiring"""
    return make_service()
