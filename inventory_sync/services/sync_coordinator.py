from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime

from inventory_sync.config import settings
from inventory_sync.db import TenantGateway
from inventory_sync.models import EntityType
from inventory_sync.services.category_sync_service import sync_categories
from inventory_sync.services.credential_service import TenantCredential, client_for, get_active_credential
from inventory_sync.services.ingredient_sync_service import sync_ingredients
from inventory_sync.services.poster_client import PosterClient
from inventory_sync.services.storage_sync_service import sync_storages
from inventory_sync.services.supplier_sync_service import sync_suppliers
from inventory_sync.services.sync_common import SyncCounts
from inventory_sync.services.sync_state_service import age_minutes, is_stale, load_last_synced, mark_failed, now_utc
from inventory_sync.utils.logger import logger

EntitySyncer = Callable[[TenantGateway, PosterClient, str], SyncCounts]

# Storages run before ingredients because ingredient membership is per section.
SYNC_ORDER: tuple[EntityType, ...] = (
    EntityType.CATEGORIES,
    EntityType.SUPPLIERS,
    EntityType.STORAGES,
    EntityType.INGREDIENTS,
)

DEFAULT_SYNCERS: dict[EntityType, EntitySyncer] = {
    EntityType.CATEGORIES: sync_categories,
    EntityType.SUPPLIERS: sync_suppliers,
    EntityType.STORAGES: sync_storages,
    EntityType.INGREDIENTS: sync_ingredients,
}


@dataclass
class EntityResult:
    status: str
    counts: SyncCounts | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.status == 'failed'

    def as_payload(self):
        if self.status == 'failed':
            return {'error': self.error}
        if self.counts is None:
            return 0
        return self.counts.total


@dataclass(frozen=True)
class EntityStatus:
    last_sync_at: datetime | None
    needs_sync: bool
    age_minutes: int | None


def parse_entity_types(names: Iterable[str]) -> list[EntityType]:
    requested: set[EntityType] = set()
    for name in names:
        try:
            requested.add(EntityType(str(name).strip().lower()))
        except ValueError:
            logger.warning('Unknown entity type %r, ignoring', name)
    return [entity for entity in SYNC_ORDER if entity in requested]


class SyncCoordinator:
    def __init__(
        self,
        gateway: TenantGateway,
        tenant_id: str,
        *,
        client_factory: Callable[[TenantCredential], PosterClient] = client_for,
        syncers: dict[EntityType, EntitySyncer] | None = None,
        threshold_minutes: int | None = None,
    ) -> None:
        self.gateway = gateway
        self.tenant_id = tenant_id
        self.client_factory = client_factory
        self.syncers = syncers or DEFAULT_SYNCERS
        self.threshold_minutes = settings.sync_threshold_minutes if threshold_minutes is None else threshold_minutes

    def _client(self) -> PosterClient:
        with self.gateway.without_tenant() as db:
            credential = get_active_credential(db, self.tenant_id)
        return self.client_factory(credential)

    def last_synced(self) -> dict[str, datetime]:
        with self.gateway.with_tenant(self.tenant_id) as db:
            return load_last_synced(db, self.tenant_id)

    def needs_sync(self, entity_type: EntityType, threshold_minutes: int | None = None, *, now: datetime | None = None) -> bool:
        threshold = self.threshold_minutes if threshold_minutes is None else threshold_minutes
        return is_stale(self.last_synced().get(entity_type.value), threshold, now=now)

    def status(self, *, now: datetime | None = None) -> dict[str, EntityStatus]:
        now = now or now_utc()
        last_synced = self.last_synced()
        return {
            entity.value: EntityStatus(
                last_sync_at=last_synced.get(entity.value),
                needs_sync=is_stale(last_synced.get(entity.value), self.threshold_minutes, now=now),
                age_minutes=age_minutes(last_synced.get(entity.value), now=now),
            )
            for entity in SYNC_ORDER
        }

    def _record_failure(self, entity_type: EntityType, error: str) -> None:
        try:
            with self.gateway.with_tenant(self.tenant_id) as db:
                mark_failed(db, self.tenant_id, entity_type.value, error)
        except Exception:
            logger.exception('[%s] Could not record %s sync failure', self.tenant_id, entity_type.value)

    def _run(self, entity_types: list[EntityType], *, force: bool) -> dict[str, EntityResult]:
        # Missing credentials fail every entity alike, so fail before starting any.
        client = self._client()
        last_synced = {} if force else self.last_synced()
        now = now_utc()
        results: dict[str, EntityResult] = {}

        for entity_type in entity_types:
            if not force and not is_stale(last_synced.get(entity_type.value), self.threshold_minutes, now=now):
                logger.info('[%s] Skipping %s sync (recently synced)', self.tenant_id, entity_type.value)
                results[entity_type.value] = EntityResult(status='skipped')
                continue
            syncer = self.syncers[entity_type]
            try:
                counts = syncer(self.gateway, client, self.tenant_id)
            except Exception as exc:
                logger.error('[%s] Failed to sync %s: %s', self.tenant_id, entity_type.value, exc)
                self._record_failure(entity_type, str(exc))
                results[entity_type.value] = EntityResult(status='failed', error=str(exc))
                continue
            results[entity_type.value] = EntityResult(status='synced', counts=counts)
        return results

    def sync_all(self) -> dict[str, EntityResult]:
        logger.info('[%s] Starting full sync...', self.tenant_id)
        return self._run(list(SYNC_ORDER), force=False)

    def force_sync_all(self) -> dict[str, EntityResult]:
        logger.info('[%s] Force syncing all data...', self.tenant_id)
        return self._run(list(SYNC_ORDER), force=True)

    def selective_sync(self, entity_types: Iterable[str], *, force: bool = False) -> dict[str, EntityResult]:
        return self._run(parse_entity_types(entity_types), force=force)

    def any_needs_sync(self, *, now: datetime | None = None) -> bool:
        now = now or now_utc()
        last_synced = self.last_synced()
        return any(is_stale(last_synced.get(entity.value), self.threshold_minutes, now=now) for entity in SYNC_ORDER)
