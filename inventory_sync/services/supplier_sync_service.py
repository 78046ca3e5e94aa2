from __future__ import annotations

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from inventory_sync.config import settings
from inventory_sync.db import TenantGateway
from inventory_sync.models import Category, EntityType, Supplier
from inventory_sync.services.poster_client import PosterClient, PosterSupplier
from inventory_sync.services.reconciliation import CandidateIndex, ReconcileAction, fill_empty, prefer_external
from inventory_sync.services.sync_common import SyncCounts, apply_in_transaction, fetch_external
from inventory_sync.utils.logger import logger


def _load_suppliers(db: Session, tenant_id: str) -> list[Supplier]:
    return db.execute(select(Supplier).where(Supplier.tenant_id == tenant_id).order_by(Supplier.id)).scalars().all()


def _upsert(db: Session, tenant_id: str, index: CandidateIndex, rows_by_id: dict[int, Supplier], external: PosterSupplier) -> ReconcileAction:
    resolution = index.resolve(external.id, external.name)

    if resolution.action == ReconcileAction.UPDATE:
        row = rows_by_id[resolution.target_id]
        row.name = external.name
        row.phone = prefer_external(row.phone, external.phone)
        row.contact_info = prefer_external(row.contact_info, external.address)
        return resolution.action

    if resolution.action == ReconcileAction.LINK:
        row = rows_by_id[resolution.target_id]
        row.external_id = external.id
        row.phone = fill_empty(row.phone, external.phone)
        row.contact_info = fill_empty(row.contact_info, external.address)
        index.claim(row)
        return resolution.action

    row = Supplier(
        tenant_id=tenant_id,
        name=external.name,
        phone=external.phone,
        contact_info=external.address,
        external_id=external.id,
    )
    db.add(row)
    db.flush()
    rows_by_id[row.id] = row
    index.claim(row)
    return resolution.action


def _suppliers_with_dependents(db: Session, tenant_id: str) -> set[int]:
    return set(
        db.execute(
            select(Category.default_supplier_id)
            .where(Category.tenant_id == tenant_id, Category.default_supplier_id.is_not(None))
            .distinct()
        ).scalars()
    )


def apply_suppliers(
    db: Session,
    tenant_id: str,
    external: list[PosterSupplier],
    *,
    prune_custom_rows: bool = True,
) -> SyncCounts:
    counts = SyncCounts(total=len(external))
    rows = _load_suppliers(db, tenant_id)
    rows_by_id = {row.id: row for row in rows}
    index = CandidateIndex(rows)

    for supplier in external:
        action = _upsert(db, tenant_id, index, rows_by_id, supplier)
        if action == ReconcileAction.CREATE:
            counts.created += 1
        elif action == ReconcileAction.LINK:
            counts.linked += 1
            counts.updated += 1
        else:
            counts.updated += 1

    if prune_custom_rows:
        # Sweep only custom rows nothing matched and nothing depends on.
        protected = _suppliers_with_dependents(db, tenant_id)
        stale_ids = [row.id for row in index.local_only() if row.id not in protected]
        if stale_ids:
            db.execute(delete(Supplier).where(Supplier.tenant_id == tenant_id, Supplier.id.in_(stale_ids)))
            counts.deleted = len(stale_ids)

    db.flush()
    return counts


def sync_suppliers(
    gateway: TenantGateway,
    client: PosterClient,
    tenant_id: str,
    *,
    prune_custom_rows: bool | None = None,
) -> SyncCounts:
    logger.info('[%s] Syncing suppliers...', tenant_id)
    prune = settings.prune_custom_rows if prune_custom_rows is None else prune_custom_rows
    external = fetch_external('suppliers', tenant_id, client.get_suppliers)
    counts = apply_in_transaction(
        gateway,
        tenant_id,
        EntityType.SUPPLIERS,
        lambda db: apply_suppliers(db, tenant_id, external, prune_custom_rows=prune),
    )
    logger.info('[%s] Synced suppliers: %s', tenant_id, counts.as_dict())
    return counts


def _remove_linked_supplier(db: Session, tenant_id: str, external_id: str) -> bool:
    row = db.execute(
        select(Supplier).where(Supplier.tenant_id == tenant_id, Supplier.external_id == external_id)
    ).scalar_one_or_none()
    if row is None:
        return False
    db.execute(
        update(Category)
        .where(Category.tenant_id == tenant_id, Category.default_supplier_id == row.id)
        .values(default_supplier_id=None)
    )
    db.delete(row)
    db.flush()
    return True


def resync_supplier(gateway: TenantGateway, client: PosterClient, tenant_id: str, supplier_id: int) -> str:
    external_id = str(supplier_id)
    logger.info('[%s] Syncing single supplier: %s', tenant_id, external_id)
    suppliers = fetch_external('suppliers', tenant_id, client.get_suppliers)
    match = next((supplier for supplier in suppliers if supplier.id == external_id), None)

    def _mutate(db: Session) -> str:
        if match is None:
            removed = _remove_linked_supplier(db, tenant_id, external_id)
            return 'deleted' if removed else 'noop'
        rows = _load_suppliers(db, tenant_id)
        action = _upsert(db, tenant_id, CandidateIndex(rows), {row.id: row for row in rows}, match)
        return {ReconcileAction.CREATE: 'created', ReconcileAction.LINK: 'linked'}.get(action, 'updated')

    outcome = apply_in_transaction(gateway, tenant_id, None, _mutate)
    logger.info('[%s] Supplier %s resync: %s', tenant_id, external_id, outcome)
    return outcome
