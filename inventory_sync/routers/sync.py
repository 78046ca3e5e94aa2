from __future__ import annotations

from collections.abc import Callable

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import BaseModel

from inventory_sync.auth import Principal, Role, get_current_principal, require_role, verify_cron_secret
from inventory_sync.db import TenantGateway
from inventory_sync.dependencies import get_client_factory, get_gateway
from inventory_sync.errors import ExternalServiceError, MissingCredentialsError, ValidationError
from inventory_sync.services.credential_service import TenantCredential, get_active_credential
from inventory_sync.services.leftover_service import get_stock
from inventory_sync.services.poster_client import PosterClient
from inventory_sync.services.scheduler_service import sync_all_tenants
from inventory_sync.services.supply_order_service import send_supply_order
from inventory_sync.services.sync_coordinator import SyncCoordinator
from inventory_sync.services.sync_state_service import now_utc

router = APIRouter(tags=['sync'])
sync_access = require_role(Role.ADMIN, Role.MANAGER)

ClientFactory = Callable[[TenantCredential], PosterClient]


class SyncRequest(BaseModel):
    entities: list[str] | None = None
    force: bool = False


class SupplyOrderRequest(BaseModel):
    supplier_id: int | str | None = None
    storage_id: int | str | None = None
    items: list[dict] | None = None
    comment: str | None = None


def _tenant_client(gateway: TenantGateway, tenant_id: str, client_factory: ClientFactory) -> PosterClient:
    try:
        with gateway.without_tenant() as db:
            credential = get_active_credential(db, tenant_id)
    except MissingCredentialsError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Poster not configured for this restaurant') from exc
    return client_factory(credential)


@router.post('/sync')
def trigger_sync(
    payload: SyncRequest | None = Body(default=None),
    principal: Principal = Depends(sync_access),
    gateway: TenantGateway = Depends(get_gateway),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    payload = payload or SyncRequest()
    coordinator = SyncCoordinator(gateway, principal.tenant_id, client_factory=client_factory)
    try:
        if payload.entities is not None:
            results = coordinator.selective_sync(payload.entities, force=payload.force)
        elif payload.force:
            results = coordinator.force_sync_all()
        else:
            results = coordinator.sync_all()
    except MissingCredentialsError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return {
        'success': True,
        'restaurantId': principal.tenant_id,
        'results': {entity: result.as_payload() for entity, result in results.items()},
        'forced': payload.force,
        'syncedAt': now_utc().isoformat(),
    }


@router.get('/sync')
def sync_status(
    principal: Principal = Depends(get_current_principal),
    gateway: TenantGateway = Depends(get_gateway),
):
    coordinator = SyncCoordinator(gateway, principal.tenant_id)
    return {
        'restaurantId': principal.tenant_id,
        'status': {
            entity: {
                'lastSyncAt': entity_status.last_sync_at.isoformat() if entity_status.last_sync_at else None,
                'needsSync': entity_status.needs_sync,
                'ageMinutes': entity_status.age_minutes,
            }
            for entity, entity_status in coordinator.status().items()
        },
    }


@router.get('/cron/sync', dependencies=[Depends(verify_cron_secret)])
def cron_sync(
    force: bool = False,
    gateway: TenantGateway = Depends(get_gateway),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    return sync_all_tenants(gateway, force=force, client_factory=client_factory).as_payload()


@router.get('/poster/leftovers')
def poster_leftovers(
    principal: Principal = Depends(get_current_principal),
    gateway: TenantGateway = Depends(get_gateway),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    client = _tenant_client(gateway, principal.tenant_id, client_factory)
    try:
        stock = get_stock(client)
    except ExternalServiceError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return {'success': True, 'data': stock}


@router.post('/poster/supply-order')
def poster_supply_order(
    payload: SupplyOrderRequest,
    principal: Principal = Depends(get_current_principal),
    gateway: TenantGateway = Depends(get_gateway),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    client = _tenant_client(gateway, principal.tenant_id, client_factory)
    try:
        data = send_supply_order(
            client,
            supplier_id=payload.supplier_id,
            storage_id=payload.storage_id,
            items=payload.items,
            comment=payload.comment,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ExternalServiceError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return {'success': True, 'data': data, 'message': 'Supply order sent to Poster successfully'}
