from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import TypeVar

from sqlalchemy.orm import Session

from inventory_sync.db import TenantGateway
from inventory_sync.errors import ExternalServiceError, SyncError, TransactionFailure
from inventory_sync.models import EntityType
from inventory_sync.services.sync_state_service import mark_synced
from inventory_sync.utils.logger import logger

T = TypeVar('T')


@dataclass
class SyncCounts:
    created: int = 0
    updated: int = 0
    linked: int = 0
    deleted: int = 0
    deactivated: int = 0
    total: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def fetch_external(label: str, tenant_id: str, fetch: Callable[[], T]) -> T:
    try:
        return fetch()
    except ExternalServiceError:
        raise
    except Exception as exc:
        raise ExternalServiceError(f'Failed to fetch {label} from Poster: {exc}') from exc


def apply_in_transaction(
    gateway: TenantGateway,
    tenant_id: str,
    entity_type: EntityType | None,
    mutate: Callable[[Session], T],
) -> T:
    """Run one syncer's mutation phase as a single tenant transaction.

    The sync state row is stamped inside the same transaction, so it only
    moves when the mutations commit.
    """
    try:
        with gateway.with_tenant(tenant_id) as db:
            result = mutate(db)
            if entity_type is not None:
                mark_synced(db, tenant_id, entity_type.value)
            return result
    except SyncError:
        raise
    except Exception as exc:
        logger.exception('[%s] %s mutation failed, rolled back', tenant_id, entity_type.value if entity_type else 'sync')
        raise TransactionFailure(f'{exc.__class__.__name__}: {exc}') from exc
