from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_sync.db import TenantGateway
from inventory_sync.models import Category, EntityType
from inventory_sync.services.poster_client import PosterCategory, PosterClient
from inventory_sync.services.reconciliation import normalize_name
from inventory_sync.services.sync_common import SyncCounts, apply_in_transaction, fetch_external
from inventory_sync.utils.logger import logger


def load_categories_by_name(db: Session, tenant_id: str) -> dict[str, Category]:
    rows = db.execute(select(Category).where(Category.tenant_id == tenant_id).order_by(Category.id)).scalars().all()
    by_name: dict[str, Category] = {}
    for row in rows:
        by_name.setdefault(normalize_name(row.name), row)
    return by_name


def apply_categories(db: Session, tenant_id: str, external: list[PosterCategory]) -> SyncCounts:
    counts = SyncCounts(total=len(external))
    rows = db.execute(select(Category).where(Category.tenant_id == tenant_id).order_by(Category.id)).scalars().all()
    by_name: dict[str, Category] = {}
    for row in rows:
        by_name.setdefault(normalize_name(row.name), row)
    # The unique constraint on name is case-sensitive, so an exact match wins over a casefolded one.
    by_exact_name = {row.name: row for row in rows}
    matched: set[Category] = set()

    for category in external:
        key = normalize_name(category.name)
        if not key:
            continue
        existing = by_exact_name.get(category.name)
        if existing is not None:
            matched.add(existing)
            continue
        existing = by_name.get(key)
        if existing is None:
            row = Category(tenant_id=tenant_id, name=category.name)
            db.add(row)
            by_name[key] = row
            by_exact_name[category.name] = row
            matched.add(row)
            counts.created += 1
            continue
        if existing in matched:
            continue
        # Names are the match key; default_supplier_id stays as curated locally.
        del by_exact_name[existing.name]
        existing.name = category.name
        by_exact_name[category.name] = existing
        matched.add(existing)
        counts.updated += 1

    db.flush()
    return counts


def sync_categories(gateway: TenantGateway, client: PosterClient, tenant_id: str) -> SyncCounts:
    logger.info('[%s] Syncing categories...', tenant_id)
    external = fetch_external('categories', tenant_id, client.get_categories)
    counts = apply_in_transaction(
        gateway, tenant_id, EntityType.CATEGORIES, lambda db: apply_categories(db, tenant_id, external)
    )
    logger.info('[%s] Synced categories: %s', tenant_id, counts.as_dict())
    return counts
