from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from inventory_sync.db import TenantGateway
from inventory_sync.services.credential_service import TenantCredential, client_for, list_active_tenant_credentials
from inventory_sync.services.poster_client import PosterClient
from inventory_sync.services.sync_coordinator import SyncCoordinator
from inventory_sync.services.sync_state_service import now_utc
from inventory_sync.utils.logger import logger


@dataclass
class TenantRunResult:
    restaurant_id: str
    restaurant_name: str | None
    success: bool | None = None
    skipped: bool = False
    reason: str | None = None
    error: str | None = None
    results: dict = field(default_factory=dict)

    def as_payload(self) -> dict:
        payload: dict = {'restaurantId': self.restaurant_id, 'restaurantName': self.restaurant_name}
        if self.skipped:
            payload.update(skipped=True, reason=self.reason)
        else:
            payload['success'] = self.success
            payload['results'] = self.results
            if self.error:
                payload['error'] = self.error
        return payload


@dataclass
class SchedulerSummary:
    timestamp: datetime
    results: list[TenantRunResult]

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def fail_count(self) -> int:
        return sum(1 for result in self.results if result.success is False)

    @property
    def skip_count(self) -> int:
        return sum(1 for result in self.results if result.skipped)

    def as_payload(self) -> dict:
        return {
            'success': True,
            'timestamp': self.timestamp.isoformat(),
            'totalRestaurants': len(self.results),
            'successCount': self.success_count,
            'failCount': self.fail_count,
            'skipCount': self.skip_count,
            'results': [result.as_payload() for result in self.results],
        }


def sync_tenant(coordinator: SyncCoordinator, credential: TenantCredential, *, force: bool = False) -> TenantRunResult:
    run = TenantRunResult(restaurant_id=credential.tenant_id, restaurant_name=credential.tenant_name)
    if not force and not coordinator.any_needs_sync():
        logger.info('Skipping %s - synced recently', credential.tenant_id)
        run.skipped = True
        run.reason = 'Recently synced'
        return run

    results = coordinator.force_sync_all() if force else coordinator.sync_all()
    run.results = {entity: result.as_payload() for entity, result in results.items()}
    failures = {entity: result.error for entity, result in results.items() if result.failed}
    run.success = not failures
    if failures:
        run.error = '; '.join(f'{entity}: {error}' for entity, error in failures.items())
    return run


def sync_all_tenants(
    gateway: TenantGateway,
    *,
    force: bool = False,
    client_factory: Callable[[TenantCredential], PosterClient] = client_for,
    coordinator_factory: Callable[..., SyncCoordinator] = SyncCoordinator,
) -> SchedulerSummary:
    logger.info('Starting background Poster sync for all restaurants...')
    with gateway.without_tenant() as db:
        credentials = list_active_tenant_credentials(db)
    logger.info('Found %s restaurants to sync', len(credentials))

    runs: list[TenantRunResult] = []
    for credential in credentials:
        coordinator = coordinator_factory(gateway, credential.tenant_id, client_factory=client_factory)
        try:
            run = sync_tenant(coordinator, credential, force=force)
        except Exception as exc:
            logger.exception('Failed to sync restaurant %s', credential.tenant_id)
            run = TenantRunResult(
                restaurant_id=credential.tenant_id,
                restaurant_name=credential.tenant_name,
                success=False,
                error=str(exc),
            )
        runs.append(run)

    summary = SchedulerSummary(timestamp=now_utc(), results=runs)
    logger.info(
        'Background sync complete: %s succeeded, %s failed, %s skipped',
        summary.success_count,
        summary.fail_count,
        summary.skip_count,
    )
    return summary
