from __future__ import annotations

import unittest

from sqlalchemy import select

from inventory_sync.errors import ExternalServiceError, TransactionFailure
from inventory_sync.models import Category, EntityType, SectionProduct, StorageSection, Supplier, SyncState
from inventory_sync.services.category_sync_service import sync_categories
from inventory_sync.services.poster_client import PosterCategory, PosterStorage, PosterSupplier
from inventory_sync.services.storage_sync_service import storage_emoji, sync_storages
from inventory_sync.services.supplier_sync_service import resync_supplier, sync_suppliers
from inventory_sync.services.sync_common import apply_in_transaction
from tests.fakes import FakePosterClient, make_gateway


class CategorySyncTests(unittest.TestCase):
    def setUp(self) -> None:
        self.gateway = make_gateway()

    def test_creates_missing_and_keeps_default_supplier(self) -> None:
        with self.gateway.with_tenant('A') as db:
            supplier = Supplier(tenant_id='A', name='Milk Co')
            db.add(supplier)
            db.flush()
            db.add(Category(tenant_id='A', name='dairy', default_supplier_id=supplier.id))

        client = FakePosterClient(categories=[PosterCategory('1', 'Dairy'), PosterCategory('2', 'Produce')])
        counts = sync_categories(self.gateway, client, 'A')

        self.assertEqual((counts.created, counts.updated, counts.total), (1, 1, 2))
        with self.gateway.with_tenant('A') as db:
            rows = {row.name: row for row in db.execute(select(Category)).scalars()}
            self.assertEqual(set(rows), {'Dairy', 'Produce'})
            self.assertIsNotNone(rows['Dairy'].default_supplier_id)
            state = db.execute(select(SyncState).where(SyncState.entity_type == 'categories')).scalar_one()
            self.assertTrue(state.last_sync_success)
            self.assertIsNotNone(state.last_synced_at)

    def test_fetch_failure_leaves_state_untouched(self) -> None:
        client = FakePosterClient(error=ExternalServiceError('down', status_code=503))
        with self.assertRaises(ExternalServiceError):
            sync_categories(self.gateway, client, 'A')
        with self.gateway.with_tenant('A') as db:
            self.assertEqual(db.execute(select(SyncState)).scalars().all(), [])

    def test_exact_name_wins_over_case_variant(self) -> None:
        with self.gateway.with_tenant('A') as db:
            db.add_all([Category(tenant_id='A', name='Dairy'), Category(tenant_id='A', name='dairy')])

        client = FakePosterClient(categories=[PosterCategory('1', 'dairy')])
        counts = sync_categories(self.gateway, client, 'A')

        self.assertEqual((counts.created, counts.updated), (0, 0))
        with self.gateway.with_tenant('A') as db:
            names = db.execute(select(Category.name).order_by(Category.id)).scalars().all()
        self.assertEqual(names, ['Dairy', 'dairy'])
        self.assertEqual(sync_categories(self.gateway, client, 'A').created, 0)


class ApplyInTransactionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.gateway = make_gateway()

    def test_error_mid_mutation_rolls_back_everything(self) -> None:
        def mutate(db):
            db.add(Supplier(tenant_id='A', name='First'))
            db.add(Category(tenant_id='A', name='Dairy'))
            db.flush()
            raise RuntimeError('boom')

        with self.assertRaises(TransactionFailure) as ctx:
            apply_in_transaction(self.gateway, 'A', EntityType.SUPPLIERS, mutate)

        self.assertIn('boom', str(ctx.exception))
        with self.gateway.with_tenant('A') as db:
            self.assertEqual(db.execute(select(Supplier)).scalars().all(), [])
            self.assertEqual(db.execute(select(Category)).scalars().all(), [])
            self.assertEqual(db.execute(select(SyncState)).scalars().all(), [])

    def test_success_commits_and_stamps_state(self) -> None:
        result = apply_in_transaction(
            self.gateway, 'A', EntityType.SUPPLIERS, lambda db: db.add(Supplier(tenant_id='A', name='Kept'))
        )

        self.assertIsNone(result)
        with self.gateway.with_tenant('A') as db:
            self.assertEqual(len(db.execute(select(Supplier)).scalars().all()), 1)
            state = db.execute(select(SyncState)).scalar_one()
            self.assertEqual((state.entity_type, state.sync_count), ('suppliers', 1))


class SupplierSyncTests(unittest.TestCase):
    def setUp(self) -> None:
        self.gateway = make_gateway()
        with self.gateway.with_tenant('A') as db:
            db.add_all(
                [
                    Supplier(tenant_id='A', name='Acme', phone='555'),
                    Supplier(tenant_id='A', name='acme'),
                    Supplier(tenant_id='A', name='Linked', external_id='8', phone='111'),
                    Supplier(tenant_id='A', name='Orphan'),
                    Supplier(tenant_id='A', name='Referenced'),
                    Supplier(tenant_id='B', name='Acme'),
                ]
            )
            db.flush()
            referenced = db.execute(select(Supplier).where(Supplier.name == 'Referenced')).scalar_one()
            db.add(Category(tenant_id='A', name='Dry goods', default_supplier_id=referenced.id))

    def _suppliers(self, tenant_id: str) -> dict[str, Supplier]:
        with self.gateway.with_tenant(tenant_id) as db:
            rows = db.execute(select(Supplier).where(Supplier.tenant_id == tenant_id).order_by(Supplier.id)).scalars()
            return {row.name: row for row in rows}

    def test_links_updates_creates_and_prunes(self) -> None:
        client = FakePosterClient(
            suppliers=[
                PosterSupplier('7', 'ACME', phone='999', address='Main st'),
                PosterSupplier('8', 'Linked Renamed', phone='222'),
                PosterSupplier('9', 'Brand New'),
            ]
        )
        counts = sync_suppliers(self.gateway, client, 'A', prune_custom_rows=True)

        self.assertEqual(counts.linked, 1)
        self.assertEqual(counts.updated, 2)
        self.assertEqual(counts.created, 1)
        # 'acme' and 'Orphan' are unmatched custom rows; 'Referenced' is protected by a category.
        self.assertEqual(counts.deleted, 2)

        rows = self._suppliers('A')
        self.assertEqual(set(rows), {'Acme', 'Linked Renamed', 'Referenced', 'Brand New'})
        self.assertEqual(rows['Acme'].external_id, '7')
        self.assertEqual(rows['Acme'].phone, '555')
        self.assertEqual(rows['Acme'].contact_info, 'Main st')
        self.assertEqual(rows['Linked Renamed'].phone, '222')
        self.assertIsNone(rows['Referenced'].external_id)
        self.assertEqual(set(self._suppliers('B')), {'Acme'})

    def test_prune_can_be_disabled(self) -> None:
        client = FakePosterClient(suppliers=[PosterSupplier('7', 'Acme')])
        counts = sync_suppliers(self.gateway, client, 'A', prune_custom_rows=False)
        self.assertEqual(counts.deleted, 0)
        self.assertIn('Orphan', self._suppliers('A'))

    def test_second_run_is_stable(self) -> None:
        client = FakePosterClient(suppliers=[PosterSupplier('7', 'Acme'), PosterSupplier('9', 'Brand New')])
        sync_suppliers(self.gateway, client, 'A')
        first = {name: row.id for name, row in self._suppliers('A').items()}
        counts = sync_suppliers(self.gateway, client, 'A')
        self.assertEqual((counts.created, counts.linked, counts.deleted), (0, 0, 0))
        self.assertEqual({name: row.id for name, row in self._suppliers('A').items()}, first)

    def test_resync_removed_supplier_is_idempotent(self) -> None:
        client = FakePosterClient(suppliers=[])
        self.assertEqual(resync_supplier(self.gateway, client, 'A', 8), 'deleted')
        self.assertEqual(resync_supplier(self.gateway, client, 'A', 8), 'noop')
        self.assertNotIn('Linked', self._suppliers('A'))

    def test_resync_single_supplier_links_by_name(self) -> None:
        client = FakePosterClient(suppliers=[PosterSupplier('7', 'acme')])
        self.assertEqual(resync_supplier(self.gateway, client, 'A', 7), 'linked')
        self.assertEqual(resync_supplier(self.gateway, client, 'A', 7), 'updated')
        with self.gateway.with_tenant('A') as db:
            linked = db.execute(select(Supplier).where(Supplier.external_id == '7')).scalar_one()
            self.assertEqual(linked.phone, '555')


class StorageSyncTests(unittest.TestCase):
    def setUp(self) -> None:
        self.gateway = make_gateway()
        with self.gateway.with_tenant('A') as db:
            kitchen = StorageSection(tenant_id='A', name='Kitchen', emoji='🔥')
            keep = StorageSection(tenant_id='A', name='Keep')
            gone = StorageSection(tenant_id='A', name='Gone', external_storage_id='9')
            db.add_all([kitchen, keep, gone, StorageSection(tenant_id='A', name='Empty custom')])
            db.flush()
            db.add(SectionProduct(section_id=keep.id, external_ingredient_id='custom_1', name='Napkins'))
            db.add(SectionProduct(section_id=gone.id, external_ingredient_id='10', name='Milk'))

    def _sections(self) -> dict[str, StorageSection]:
        with self.gateway.with_tenant('A') as db:
            return {row.name: row for row in db.execute(select(StorageSection)).scalars()}

    def test_reconciles_sections(self) -> None:
        client = FakePosterClient(storages=[PosterStorage('1', 'KITCHEN'), PosterStorage('2', 'Бар')])
        counts = sync_storages(self.gateway, client, 'A', prune_custom_rows=True)

        self.assertEqual((counts.linked, counts.created, counts.deactivated, counts.deleted), (1, 1, 1, 1))
        sections = self._sections()
        self.assertEqual(set(sections), {'Kitchen', 'Бар', 'Keep', 'Gone'})
        self.assertEqual(sections['Kitchen'].external_storage_id, '1')
        self.assertEqual(sections['Kitchen'].emoji, '🔥')
        self.assertEqual(sections['Бар'].emoji, '🍷')
        self.assertFalse(sections['Gone'].is_active)
        self.assertIsNone(sections['Keep'].external_storage_id)

    def test_reappearing_storage_is_reactivated(self) -> None:
        sync_storages(self.gateway, FakePosterClient(storages=[]), 'A', prune_custom_rows=False)
        self.assertFalse(self._sections()['Gone'].is_active)
        client = FakePosterClient(storages=[PosterStorage('9', 'Gone again')])
        sync_storages(self.gateway, client, 'A', prune_custom_rows=False)
        sections = self._sections()
        self.assertTrue(sections['Gone again'].is_active)

    def test_storage_emoji_keywords(self) -> None:
        self.assertEqual(storage_emoji('Main Kitchen'), '🍳')
        self.assertEqual(storage_emoji('Склад 2'), '📦')
        self.assertEqual(storage_emoji('Garage'), '📍')


if __name__ == '__main__':
    unittest.main()
