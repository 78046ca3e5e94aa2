from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from inventory_sync.config import settings
from inventory_sync.db import TenantGateway
from inventory_sync.models import EntityType, SectionProduct, StorageSection
from inventory_sync.services.poster_client import PosterClient, PosterStorage
from inventory_sync.services.reconciliation import CandidateIndex, ReconcileAction
from inventory_sync.services.sync_common import SyncCounts, apply_in_transaction, fetch_external
from inventory_sync.utils.logger import logger

DEFAULT_EMOJI = '📍'

STORAGE_EMOJI_KEYWORDS = (
    (('кухня', 'kitchen'), '🍳'),
    (('бар', 'bar'), '🍷'),
    (('горничная', 'housekeeping'), '🧹'),
    (('склад', 'warehouse', 'stock'), '📦'),
    (('офис', 'office'), '💼'),
    (('ресепшн', 'reception'), '🔑'),
)


def storage_emoji(name: str) -> str:
    lowered = name.lower()
    for keywords, emoji in STORAGE_EMOJI_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return emoji
    return DEFAULT_EMOJI


def _sections_with_products(db: Session, section_ids: list[int]) -> set[int]:
    if not section_ids:
        return set()
    return set(
        db.execute(select(SectionProduct.section_id).where(SectionProduct.section_id.in_(section_ids)).distinct()).scalars()
    )


def apply_storages(
    db: Session,
    tenant_id: str,
    external: list[PosterStorage],
    *,
    prune_custom_rows: bool = True,
) -> SyncCounts:
    counts = SyncCounts(total=len(external))
    rows = db.execute(
        select(StorageSection).where(StorageSection.tenant_id == tenant_id).order_by(StorageSection.id)
    ).scalars().all()
    rows_by_id = {row.id: row for row in rows}
    index = CandidateIndex(rows)
    seen: set[str] = set()

    for storage in external:
        seen.add(storage.id)
        resolution = index.resolve(storage.id, storage.name)

        if resolution.action == ReconcileAction.CREATE:
            row = StorageSection(
                tenant_id=tenant_id,
                name=storage.name,
                emoji=storage_emoji(storage.name),
                external_storage_id=storage.id,
                is_active=True,
            )
            db.add(row)
            db.flush()
            rows_by_id[row.id] = row
            index.claim(row)
            counts.created += 1
            continue

        row = rows_by_id[resolution.target_id]
        if resolution.action == ReconcileAction.LINK:
            row.external_storage_id = storage.id
            index.claim(row)
            counts.linked += 1
        else:
            row.name = storage.name
        row.emoji = row.emoji or storage_emoji(storage.name)
        row.is_active = True
        counts.updated += 1

    # Linked sections whose storage vanished keep their products; they are only hidden.
    for row in rows:
        if row.external_storage_id is not None and row.external_storage_id not in seen and row.is_active:
            row.is_active = False
            counts.deactivated += 1

    if prune_custom_rows:
        custom = [row.id for row in index.local_only()]
        protected = _sections_with_products(db, custom)
        stale_ids = [section_id for section_id in custom if section_id not in protected]
        if stale_ids:
            db.execute(
                delete(StorageSection).where(StorageSection.tenant_id == tenant_id, StorageSection.id.in_(stale_ids))
            )
            counts.deleted = len(stale_ids)

    db.flush()
    return counts


def sync_storages(
    gateway: TenantGateway,
    client: PosterClient,
    tenant_id: str,
    *,
    prune_custom_rows: bool | None = None,
) -> SyncCounts:
    logger.info('[%s] Syncing storages...', tenant_id)
    prune = settings.prune_custom_rows if prune_custom_rows is None else prune_custom_rows
    external = fetch_external('storages', tenant_id, client.get_storages)
    counts = apply_in_transaction(
        gateway,
        tenant_id,
        EntityType.STORAGES,
        lambda db: apply_storages(db, tenant_id, external, prune_custom_rows=prune),
    )
    logger.info('[%s] Synced storages: %s', tenant_id, counts.as_dict())
    return counts
