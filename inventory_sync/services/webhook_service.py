from __future__ import annotations

import hashlib
import hmac
from collections.abc import Callable
from dataclasses import dataclass

import pydantic
from pydantic import BaseModel, ConfigDict, field_validator

from inventory_sync.config import settings
from inventory_sync.db import TenantGateway
from inventory_sync.errors import ExternalServiceError, TenantResolutionError, ValidationError
from inventory_sync.services.audit_service import log_webhook_event
from inventory_sync.services.credential_service import TenantCredential, client_for, resolve_tenant_by_account
from inventory_sync.services.ingredient_sync_service import resync_ingredient
from inventory_sync.services.poster_client import PosterClient
from inventory_sync.services.storage_sync_service import sync_storages
from inventory_sync.services.supplier_sync_service import resync_supplier
from inventory_sync.utils.logger import logger


class PosterWebhook(BaseModel):
    model_config = ConfigDict(extra='allow')

    account: str | None = None
    account_id: str | None = None
    object: str | None = None
    object_id: str | None = None
    action: str | None = None
    time: str | None = None
    verify: str | None = None
    data: str | None = None

    @field_validator('account', 'account_id', 'object', 'object_id', 'action', 'time', 'verify', 'data', mode='before')
    @classmethod
    def _as_text(cls, value):
        if value is None:
            return None
        value = str(value).strip()
        return value or None


@dataclass(frozen=True)
class WebhookOutcome:
    status: str
    tenant_id: str | None = None
    object_type: str | None = None
    result: str | None = None
    error: str | None = None


def parse_webhook(raw: dict) -> PosterWebhook:
    raw = dict(raw)
    # Some hooks send the account number instead of the account id.
    if not raw.get('account_id') and raw.get('account_number'):
        raw['account_id'] = raw['account_number']
    try:
        webhook = PosterWebhook.model_validate(raw)
    except pydantic.ValidationError as exc:
        raise ValidationError(f'Malformed webhook payload: {exc.errors()}') from exc
    if not webhook.object_id:
        raise ValidationError('Webhook payload is missing object_id')
    if not webhook.account_id and not webhook.account:
        raise ValidationError('Webhook payload is missing account_id')
    return webhook


def expected_signature(webhook: PosterWebhook, secret: str) -> str:
    parts = [webhook.account or '', webhook.object or '', webhook.object_id or '', webhook.action or '']
    if webhook.data:
        parts.append(webhook.data)
    parts.extend([webhook.time or '', secret])
    return hashlib.md5(';'.join(parts).encode('utf-8')).hexdigest()


def verify_signature(webhook: PosterWebhook, secret: str | None) -> None:
    if not secret:
        return
    if not webhook.verify or not hmac.compare_digest(webhook.verify, expected_signature(webhook, secret)):
        raise ValidationError('Webhook signature verification failed')


def dispatch(gateway: TenantGateway, client: PosterClient, tenant_id: str, webhook: PosterWebhook) -> str:
    if webhook.object == 'product':
        return resync_ingredient(gateway, client, tenant_id, webhook.object_id)
    if webhook.object == 'supplier':
        try:
            supplier_id = int(webhook.object_id)
        except ValueError as exc:
            raise ValidationError(f'Supplier webhook has a non-numeric object_id {webhook.object_id!r}') from exc
        return resync_supplier(gateway, client, tenant_id, supplier_id)
    if webhook.object == 'storage':
        # Storages change rarely; a full storage resync keeps this simple.
        counts = sync_storages(gateway, client, tenant_id)
        return f'storages synced ({counts.total})'
    logger.info('Unhandled webhook type: %s', webhook.object)
    return 'ignored'


class WebhookRouter:
    def __init__(
        self,
        gateway: TenantGateway,
        *,
        client_factory: Callable[[TenantCredential], PosterClient] = client_for,
        secret: str | None = None,
        unmatched_tenant_id: str | None = None,
    ) -> None:
        self.gateway = gateway
        self.client_factory = client_factory
        self.secret = settings.poster_application_secret if secret is None else secret
        self.unmatched_tenant_id = unmatched_tenant_id or settings.unmatched_tenant_id

    def _audit(self, tenant_id: str, raw: dict, webhook: PosterWebhook | None, **extra) -> None:
        payload = {**raw, **{key: value for key, value in extra.items() if value is not None}}
        try:
            with self.gateway.without_tenant() as db:
                log_webhook_event(
                    db,
                    tenant_id=tenant_id,
                    object_type=webhook.object if webhook else raw.get('object'),
                    object_id=webhook.object_id if webhook else raw.get('object_id'),
                    action=webhook.action if webhook else raw.get('action'),
                    payload=payload,
                )
        except Exception:
            logger.exception('Failed to write webhook audit log for tenant %s', tenant_id)

    def handle(self, raw: dict) -> WebhookOutcome:
        try:
            webhook = parse_webhook(raw)
            verify_signature(webhook, self.secret)
        except ValidationError as exc:
            logger.warning('Ignoring webhook: %s', exc)
            self._audit(self.unmatched_tenant_id, raw, None, error=str(exc))
            return WebhookOutcome(status='ignored', object_type=raw.get('object'), error=str(exc))

        logger.info(
            'Poster webhook: account=%s object=%s action=%s object_id=%s',
            webhook.account_id or webhook.account,
            webhook.object,
            webhook.action,
            webhook.object_id,
        )

        try:
            with self.gateway.without_tenant() as db:
                credential = resolve_tenant_by_account(db, account_id=webhook.account_id, account_name=webhook.account)
        except TenantResolutionError as exc:
            logger.error('%s', exc)
            self._audit(
                self.unmatched_tenant_id,
                raw,
                webhook,
                error='Restaurant not found',
                original_account_id=webhook.account_id,
                original_account=webhook.account,
            )
            return WebhookOutcome(status='unmatched', object_type=webhook.object, error=str(exc))

        tenant_id = credential.tenant_id
        try:
            result = dispatch(self.gateway, self.client_factory(credential), tenant_id, webhook)
        except ExternalServiceError as exc:
            logger.error('[%s] Poster API failure while handling %s webhook: %s', tenant_id, webhook.object, exc)
            self._audit(tenant_id, raw, webhook, error=str(exc))
            raise
        except ValidationError as exc:
            logger.warning('[%s] Ignoring webhook: %s', tenant_id, exc)
            self._audit(tenant_id, raw, webhook, error=str(exc))
            return WebhookOutcome(status='ignored', tenant_id=tenant_id, object_type=webhook.object, error=str(exc))
        except Exception as exc:
            logger.exception('[%s] Webhook handler failed for %s %s', tenant_id, webhook.object, webhook.object_id)
            self._audit(tenant_id, raw, webhook, error=str(exc))
            return WebhookOutcome(status='failed', tenant_id=tenant_id, object_type=webhook.object, error=str(exc))

        self._audit(tenant_id, raw, webhook, result=result)
        return WebhookOutcome(status='processed', tenant_id=tenant_id, object_type=webhook.object, result=result)
