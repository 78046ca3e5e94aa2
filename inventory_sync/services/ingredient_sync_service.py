from __future__ import annotations

import secrets
import time
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from inventory_sync.db import TenantGateway
from inventory_sync.models import CUSTOM_INGREDIENT_PREFIX, EntityType, SectionProduct, StorageSection
from inventory_sync.services.category_sync_service import load_categories_by_name
from inventory_sync.services.leftover_service import fetch_leftovers_by_storage
from inventory_sync.services.poster_client import PosterClient, PosterIngredient, PosterLeftover
from inventory_sync.services.reconciliation import normalize_name, prefer_external
from inventory_sync.services.sync_common import SyncCounts, apply_in_transaction, fetch_external
from inventory_sync.utils.logger import logger


@dataclass(frozen=True)
class SectionRef:
    id: int
    storage_id: str


def new_custom_ingredient_id() -> str:
    return f'{CUSTOM_INGREDIENT_PREFIX}{int(time.time() * 1000)}_{secrets.token_hex(5)}'


def is_custom_ingredient_id(external_ingredient_id: str) -> bool:
    return external_ingredient_id.startswith(CUSTOM_INGREDIENT_PREFIX)


def can_delete_product(product: SectionProduct) -> bool:
    return is_custom_ingredient_id(product.external_ingredient_id)


def select_for_section(ingredients: list[PosterIngredient], leftovers: Iterable[PosterLeftover]) -> list[PosterIngredient]:
    """Ingredients that belong to one storage.

    A storage with leftovers only carries the ingredients it reports stock for;
    an empty storage gets every ingredient so a new storage can be stocked.
    """
    present = {str(entry.ingredient_id) for entry in leftovers}
    if not present:
        return list(ingredients)
    return [ingredient for ingredient in ingredients if ingredient.id in present]


def _load_linked_sections(gateway: TenantGateway, tenant_id: str) -> list[SectionRef]:
    with gateway.with_tenant(tenant_id) as db:
        rows = db.execute(
            select(StorageSection.id, StorageSection.external_storage_id)
            .where(
                StorageSection.tenant_id == tenant_id,
                StorageSection.external_storage_id.is_not(None),
                StorageSection.is_active.is_(True),
            )
            .order_by(StorageSection.id)
        ).all()
    return [SectionRef(id=section_id, storage_id=str(storage_id)) for section_id, storage_id in rows]


def _load_products(db: Session, section_ids: list[int], external_ids: Iterable[str] | None = None) -> dict[tuple[int, str], SectionProduct]:
    if not section_ids:
        return {}
    stmt = select(SectionProduct).where(SectionProduct.section_id.in_(section_ids))
    if external_ids is not None:
        stmt = stmt.where(SectionProduct.external_ingredient_id.in_(list(external_ids)))
    return {(row.section_id, row.external_ingredient_id): row for row in db.execute(stmt).scalars().all()}


def _category_id_for(ingredient: PosterIngredient, categories_by_name: dict, current: int | None) -> int | None:
    if ingredient.category_name:
        category = categories_by_name.get(normalize_name(ingredient.category_name))
        if category is not None:
            return category.id
    return current


def _upsert_product(
    db: Session,
    section_id: int,
    ingredient: PosterIngredient,
    existing: dict[tuple[int, str], SectionProduct],
    categories_by_name: dict,
) -> bool:
    row = existing.get((section_id, ingredient.id))
    if row is None:
        row = SectionProduct(
            section_id=section_id,
            external_ingredient_id=ingredient.id,
            name=ingredient.name,
            unit=ingredient.unit,
            category_id=_category_id_for(ingredient, categories_by_name, None),
            is_active=True,
        )
        db.add(row)
        existing[(section_id, ingredient.id)] = row
        return True
    row.name = ingredient.name
    row.unit = prefer_external(row.unit, ingredient.unit)
    row.category_id = _category_id_for(ingredient, categories_by_name, row.category_id)
    row.is_active = True
    return False


def apply_ingredients(
    db: Session,
    tenant_id: str,
    plan: dict[int, list[PosterIngredient]],
) -> SyncCounts:
    counts = SyncCounts()
    categories_by_name = load_categories_by_name(db, tenant_id)
    existing = _load_products(db, list(plan))

    for section_id, ingredients in plan.items():
        for ingredient in ingredients:
            created = _upsert_product(db, section_id, ingredient, existing, categories_by_name)
            if created:
                counts.created += 1
            else:
                counts.updated += 1
            counts.total += 1

    db.flush()
    return counts


def build_section_plan(
    client: PosterClient,
    sections: list[SectionRef],
    ingredients: list[PosterIngredient],
) -> dict[int, list[PosterIngredient]]:
    leftovers = fetch_leftovers_by_storage(client, [section.storage_id for section in sections])
    return {section.id: select_for_section(ingredients, leftovers.get(section.storage_id, [])) for section in sections}


def sync_ingredients(gateway: TenantGateway, client: PosterClient, tenant_id: str) -> SyncCounts:
    logger.info('[%s] Syncing ingredients...', tenant_id)
    ingredients = fetch_external('ingredients', tenant_id, client.get_ingredients)
    sections = _load_linked_sections(gateway, tenant_id)
    if not sections:
        logger.info('[%s] No Poster-linked sections, sync storages first', tenant_id)
    plan = build_section_plan(client, sections, ingredients)
    counts = apply_in_transaction(gateway, tenant_id, EntityType.INGREDIENTS, lambda db: apply_ingredients(db, tenant_id, plan))
    logger.info('[%s] Synced ingredients across %s sections: %s', tenant_id, len(sections), counts.as_dict())
    return counts


def resync_ingredient(gateway: TenantGateway, client: PosterClient, tenant_id: str, ingredient_id: str) -> str:
    ingredient_id = str(ingredient_id)
    logger.info('[%s] Syncing single ingredient: %s', tenant_id, ingredient_id)
    ingredients = fetch_external('ingredients', tenant_id, client.get_ingredients)
    match = next((ingredient for ingredient in ingredients if ingredient.id == ingredient_id), None)
    sections = _load_linked_sections(gateway, tenant_id)
    section_ids = [section.id for section in sections]

    if match is None:

        def _deactivate(db: Session) -> str:
            if not section_ids:
                return 'noop'
            result = db.execute(
                update(SectionProduct)
                .where(
                    SectionProduct.section_id.in_(section_ids),
                    SectionProduct.external_ingredient_id == ingredient_id,
                    SectionProduct.is_active.is_(True),
                )
                .values(is_active=False)
            )
            return 'deactivated' if result.rowcount else 'noop'

        outcome = apply_in_transaction(gateway, tenant_id, None, _deactivate)
        logger.info('[%s] Ingredient %s not returned by Poster: %s', tenant_id, ingredient_id, outcome)
        return outcome

    with gateway.with_tenant(tenant_id) as db:
        linked_sections = {section_id for section_id, _ in _load_products(db, section_ids, [ingredient_id])}
    missing = [section for section in sections if section.id not in linked_sections]
    plan = {section_id: [match] for section_id in linked_sections}
    for section_id, members in build_section_plan(client, missing, [match]).items():
        if members:
            plan[section_id] = members

    def _upsert(db: Session) -> str:
        counts = apply_ingredients(db, tenant_id, plan)
        if counts.created:
            return 'created'
        return 'updated' if counts.updated else 'noop'

    outcome = apply_in_transaction(gateway, tenant_id, None, _upsert)
    logger.info('[%s] Ingredient %s resync: %s', tenant_id, ingredient_id, outcome)
    return outcome
