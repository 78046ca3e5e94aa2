from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_sync.errors import MissingCredentialsError, TenantResolutionError
from inventory_sync.models import PosterCredential, Restaurant
from inventory_sync.services.poster_client import PosterClient, build_poster_client


@dataclass(frozen=True)
class TenantCredential:
    tenant_id: str
    access_token: str
    account_id: str | None = None
    account_name: str | None = None
    tenant_name: str | None = None


def _to_credential(row: PosterCredential, tenant_name: str | None = None) -> TenantCredential:
    return TenantCredential(
        tenant_id=row.tenant_id,
        access_token=row.access_token,
        account_id=row.account_id,
        account_name=row.account_name,
        tenant_name=tenant_name,
    )


def get_active_credential(db: Session, tenant_id: str) -> TenantCredential:
    row = db.execute(
        select(PosterCredential)
        .where(PosterCredential.tenant_id == tenant_id, PosterCredential.is_active.is_(True))
        .order_by(PosterCredential.created_at.desc(), PosterCredential.id.desc())
        .limit(1)
    ).scalar_one_or_none()
    if row is None or not row.access_token:
        raise MissingCredentialsError(f'No active Poster token found for restaurant {tenant_id}')
    return _to_credential(row)


def resolve_tenant_by_account(db: Session, *, account_id: str | None, account_name: str | None) -> TenantCredential:
    base = (
        select(PosterCredential)
        .where(PosterCredential.is_active.is_(True))
        .order_by(PosterCredential.created_at.desc(), PosterCredential.id.desc())
        .limit(1)
    )
    row = None
    if account_id:
        row = db.execute(base.where(PosterCredential.account_id == str(account_id))).scalar_one_or_none()
    if row is None and account_name:
        row = db.execute(base.where(PosterCredential.account_name == account_name)).scalar_one_or_none()
    if row is None:
        raise TenantResolutionError(f'No restaurant found for Poster account {account_id} / {account_name}')
    return _to_credential(row)


def list_active_tenant_credentials(db: Session) -> list[TenantCredential]:
    rows = db.execute(
        select(PosterCredential, Restaurant.name)
        .join(Restaurant, Restaurant.id == PosterCredential.tenant_id)
        .where(Restaurant.is_active.is_(True), PosterCredential.is_active.is_(True))
        .order_by(Restaurant.id, PosterCredential.created_at.desc(), PosterCredential.id.desc())
    ).all()
    credentials: dict[str, TenantCredential] = {}
    for row, tenant_name in rows:
        if row.tenant_id not in credentials:
            credentials[row.tenant_id] = _to_credential(row, tenant_name)
    return list(credentials.values())


def client_for(credential: TenantCredential) -> PosterClient:
    return build_poster_client(access_token=credential.access_token, account_name=credential.account_name)
