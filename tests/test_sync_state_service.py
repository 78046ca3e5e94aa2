from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from inventory_sync.models import SyncState
from inventory_sync.services.sync_state_service import (
    age_minutes,
    is_stale,
    load_last_synced,
    mark_failed,
    mark_synced,
    needs_sync,
)
from tests.fakes import make_gateway

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class StalenessTests(unittest.TestCase):
    def test_threshold_boundary_is_inclusive(self) -> None:
        self.assertFalse(is_stale(NOW - timedelta(minutes=29), 30, now=NOW))
        self.assertTrue(is_stale(NOW - timedelta(minutes=30), 30, now=NOW))
        self.assertTrue(is_stale(NOW - timedelta(minutes=31), 30, now=NOW))

    def test_never_synced_is_stale(self) -> None:
        self.assertTrue(is_stale(None, 30, now=NOW))
        self.assertIsNone(age_minutes(None, now=NOW))

    def test_naive_timestamps_are_read_as_utc(self) -> None:
        naive = (NOW - timedelta(minutes=45)).replace(tzinfo=None)
        self.assertTrue(is_stale(naive, 30, now=NOW))
        self.assertEqual(age_minutes(naive, now=NOW), 45)


class SyncStateStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.gateway = make_gateway()

    def test_mark_synced_upserts_and_counts(self) -> None:
        with self.gateway.with_tenant('A') as db:
            mark_synced(db, 'A', 'suppliers', now=NOW - timedelta(minutes=5))
        with self.gateway.with_tenant('A') as db:
            mark_synced(db, 'A', 'suppliers', now=NOW - timedelta(minutes=1))
        with self.gateway.with_tenant('A') as db:
            states = db.query(SyncState).filter_by(tenant_id='A').all()
            self.assertEqual(len(states), 1)
            self.assertEqual(states[0].sync_count, 2)
            self.assertFalse(needs_sync(db, 'A', 'suppliers', 30, now=NOW))
            self.assertTrue(needs_sync(db, 'A', 'storages', 30, now=NOW))
            self.assertEqual(load_last_synced(db, 'A'), {'suppliers': NOW - timedelta(minutes=1)})

    def test_mark_failed_keeps_last_success_timestamp(self) -> None:
        with self.gateway.with_tenant('A') as db:
            mark_synced(db, 'A', 'categories', now=NOW - timedelta(minutes=40))
        with self.gateway.with_tenant('A') as db:
            mark_failed(db, 'A', 'categories', 'boom')
        with self.gateway.with_tenant('A') as db:
            state = db.query(SyncState).filter_by(tenant_id='A', entity_type='categories').one()
            self.assertFalse(state.last_sync_success)
            self.assertEqual(state.last_sync_error, 'boom')
            self.assertEqual(load_last_synced(db, 'A')['categories'], NOW - timedelta(minutes=40))

    def test_state_is_scoped_per_tenant(self) -> None:
        with self.gateway.with_tenant('A') as db:
            mark_synced(db, 'A', 'categories', now=NOW)
        with self.gateway.with_tenant('B') as db:
            self.assertEqual(load_last_synced(db, 'B'), {})


if __name__ == '__main__':
    unittest.main()
