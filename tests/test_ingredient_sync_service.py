from __future__ import annotations

import unittest

from sqlalchemy import select

from inventory_sync.models import Category, SectionProduct, StorageSection
from inventory_sync.services.ingredient_sync_service import (
    can_delete_product,
    new_custom_ingredient_id,
    resync_ingredient,
    select_for_section,
    sync_ingredients,
)
from inventory_sync.services.poster_client import PosterIngredient, PosterLeftover
from tests.fakes import FakePosterClient, make_gateway

MILK = PosterIngredient('10', 'Milk', unit='l', category_name='dairy')
SUGAR = PosterIngredient('11', 'Sugar', unit='kg')


class SelectForSectionTests(unittest.TestCase):
    def test_storage_with_leftovers_keeps_only_its_ingredients(self) -> None:
        selected = select_for_section([MILK, SUGAR], [PosterLeftover('10', '3')])
        self.assertEqual(selected, [MILK])

    def test_empty_storage_gets_every_ingredient(self) -> None:
        self.assertEqual(select_for_section([MILK, SUGAR], []), [MILK, SUGAR])


class IngredientSyncTests(unittest.TestCase):
    def setUp(self) -> None:
        self.gateway = make_gateway()
        with self.gateway.with_tenant('A') as db:
            dairy = Category(tenant_id='A', name='Dairy')
            kitchen = StorageSection(tenant_id='A', name='Kitchen', external_storage_id='1')
            bar = StorageSection(tenant_id='A', name='Bar', external_storage_id='2')
            custom = StorageSection(tenant_id='A', name='Shelf')
            closed = StorageSection(tenant_id='A', name='Closed', external_storage_id='3', is_active=False)
            db.add_all([dairy, kitchen, bar, custom, closed])
            db.flush()
            db.add(SectionProduct(section_id=kitchen.id, external_ingredient_id='10', name='Old milk'))
            db.add(SectionProduct(section_id=kitchen.id, external_ingredient_id='custom_abc', name='Napkins'))
            self.dairy_id = dairy.id
            self.section_ids = {row.name: row.id for row in (kitchen, bar, custom, closed)}

        self.client = FakePosterClient(
            ingredients=[MILK, SUGAR],
            leftovers={'1': [PosterLeftover('10', '2,5', '1')], '2': []},
        )

    def _products(self) -> dict[tuple[str, str], SectionProduct]:
        names = {section_id: name for name, section_id in self.section_ids.items()}
        with self.gateway.with_tenant('A') as db:
            rows = db.execute(select(SectionProduct)).scalars().all()
        return {(names[row.section_id], row.external_ingredient_id): row for row in rows}

    def test_syncs_membership_per_storage(self) -> None:
        counts = sync_ingredients(self.gateway, self.client, 'A')

        self.assertEqual((counts.created, counts.updated, counts.total), (2, 1, 3))
        products = self._products()
        self.assertEqual(
            set(products),
            {('Kitchen', '10'), ('Kitchen', 'custom_abc'), ('Bar', '10'), ('Bar', '11')},
        )
        kitchen_milk = products[('Kitchen', '10')]
        self.assertEqual(kitchen_milk.name, 'Milk')
        self.assertEqual(kitchen_milk.unit, 'l')
        self.assertEqual(kitchen_milk.category_id, self.dairy_id)
        self.assertEqual(products[('Kitchen', 'custom_abc')].name, 'Napkins')
        self.assertIsNone(products[('Bar', '11')].category_id)

    def test_second_run_only_updates(self) -> None:
        sync_ingredients(self.gateway, self.client, 'A')
        counts = sync_ingredients(self.gateway, self.client, 'A')
        self.assertEqual((counts.created, counts.updated), (0, 3))

    def test_no_linked_sections_is_a_no_op(self) -> None:
        counts = sync_ingredients(self.gateway, self.client, 'B')
        self.assertEqual(counts.total, 0)

    def test_removed_ingredient_is_deactivated_once(self) -> None:
        sync_ingredients(self.gateway, self.client, 'A')
        client = FakePosterClient(ingredients=[SUGAR], leftovers={'1': [], '2': []})

        self.assertEqual(resync_ingredient(self.gateway, client, 'A', '10'), 'deactivated')
        self.assertEqual(resync_ingredient(self.gateway, client, 'A', '10'), 'noop')
        products = self._products()
        self.assertFalse(products[('Kitchen', '10')].is_active)
        self.assertFalse(products[('Bar', '10')].is_active)
        self.assertTrue(products[('Bar', '11')].is_active)

    def test_resync_new_ingredient_follows_storage_membership(self) -> None:
        client = FakePosterClient(
            ingredients=[MILK, PosterIngredient('12', 'Salt')],
            leftovers={'1': [PosterLeftover('10', '1', '1')], '2': []},
        )
        self.assertEqual(resync_ingredient(self.gateway, client, 'A', '12'), 'created')
        products = self._products()
        self.assertIn(('Bar', '12'), products)
        self.assertNotIn(('Kitchen', '12'), products)

    def test_custom_ids(self) -> None:
        custom_id = new_custom_ingredient_id()
        self.assertTrue(custom_id.startswith('custom_'))
        self.assertNotEqual(custom_id, new_custom_ingredient_id())
        self.assertTrue(can_delete_product(SectionProduct(section_id=1, external_ingredient_id=custom_id, name='x')))
        self.assertFalse(can_delete_product(SectionProduct(section_id=1, external_ingredient_id='10', name='x')))


if __name__ == '__main__':
    unittest.main()
