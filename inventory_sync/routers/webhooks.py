from __future__ import annotations

import json
from collections.abc import Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from inventory_sync.auth import Principal, get_current_principal
from inventory_sync.db import TenantGateway
from inventory_sync.dependencies import get_client_factory, get_gateway
from inventory_sync.errors import ExternalServiceError
from inventory_sync.services.audit_service import list_webhook_events
from inventory_sync.services.credential_service import TenantCredential
from inventory_sync.services.poster_client import PosterClient
from inventory_sync.services.webhook_service import WebhookRouter
from inventory_sync.utils.logger import logger

router = APIRouter(prefix='/poster', tags=['webhooks'])


async def _read_payload(request: Request) -> dict | None:
    content_type = request.headers.get('content-type') or ''
    if 'application/x-www-form-urlencoded' in content_type or 'multipart/form-data' in content_type:
        form = await request.form()
        return {key: value for key, value in form.items()}
    body = await request.body()
    try:
        parsed = json.loads(body or b'{}')
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


@router.post('/webhooks')
async def poster_webhook(
    request: Request,
    gateway: TenantGateway = Depends(get_gateway),
    client_factory: Callable[[TenantCredential], PosterClient] = Depends(get_client_factory),
):
    payload = await _read_payload(request)
    if payload is None:
        logger.error('Failed to parse webhook body')
        return JSONResponse(
            {'error': 'Invalid format', 'details': 'Could not parse JSON or Form Data'},
            status_code=400,
        )

    webhook_router = WebhookRouter(gateway, client_factory=client_factory)
    try:
        outcome = await run_in_threadpool(webhook_router.handle, payload)
    except ExternalServiceError as exc:
        return JSONResponse({'success': False, 'error': str(exc)}, status_code=502)

    if outcome.status == 'unmatched':
        return JSONResponse(
            {'success': False, 'error': 'Restaurant not found', 'account_id': payload.get('account_id')},
            status_code=404,
        )
    body = {'success': True, 'status': outcome.status}
    if outcome.error:
        body['warning'] = outcome.error
    return body


@router.get('/webhooks')
def poster_webhook_probe():
    return {'status': 'ok', 'service': 'Poster Webhook Handler'}


@router.get('/webhook-logs')
def webhook_logs(
    limit: int = 100,
    principal: Principal = Depends(get_current_principal),
    gateway: TenantGateway = Depends(get_gateway),
):
    with gateway.with_tenant(principal.tenant_id) as db:
        events = list_webhook_events(db, tenant_id=principal.tenant_id, limit=min(max(limit, 1), 500))
        data = [
            {
                'id': event.id,
                'webhook_type': event.webhook_type,
                'object_type': event.object_type,
                'object_id': event.object_id,
                'action': event.action,
                'payload': event.payload,
                'created_at': event.created_at.isoformat() if event.created_at else None,
            }
            for event in events
        ]
    return {'success': True, 'data': data}
