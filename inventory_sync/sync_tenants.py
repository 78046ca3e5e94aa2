from __future__ import annotations

import argparse
import json

from inventory_sync.db import gateway
from inventory_sync.errors import MissingCredentialsError
from inventory_sync.services.scheduler_service import sync_all_tenants
from inventory_sync.services.sync_coordinator import SYNC_ORDER, SyncCoordinator


def sync_one_tenant(tenant_id: str, *, force: bool, entities: list[str] | None) -> dict:
    coordinator = SyncCoordinator(gateway, tenant_id)
    if entities:
        results = coordinator.selective_sync(entities, force=force)
    elif force:
        results = coordinator.force_sync_all()
    else:
        results = coordinator.sync_all()
    return {entity: result.as_payload() for entity, result in results.items()}


def main() -> None:
    parser = argparse.ArgumentParser(description='Sync catalog data from Poster for every connected restaurant.')
    parser.add_argument('--force', action='store_true', help='Ignore the staleness threshold and sync everything.')
    parser.add_argument('--tenant', help='Only sync this restaurant id.')
    parser.add_argument(
        '--entities',
        nargs='+',
        choices=[entity.value for entity in SYNC_ORDER],
        help='Entity types to sync. Requires --tenant.',
    )
    args = parser.parse_args()

    if args.entities and not args.tenant:
        parser.error('--entities requires --tenant')

    if args.tenant:
        try:
            results = sync_one_tenant(args.tenant, force=args.force, entities=args.entities)
        except MissingCredentialsError as exc:
            parser.exit(1, f'{exc}\n')
        print(json.dumps({'restaurantId': args.tenant, 'results': results}, indent=2, default=str))
        return

    summary = sync_all_tenants(gateway, force=args.force)
    print(json.dumps(summary.as_payload(), indent=2, default=str))
    print(
        f'Poster sync complete: succeeded={summary.success_count}, '
        f'failed={summary.fail_count}, skipped={summary.skip_count}'
    )


if __name__ == '__main__':
    main()
