from __future__ import annotations

import hmac
from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, Request, status

from inventory_sync.config import settings
from inventory_sync.errors import AuthorizationError


class Role(str, Enum):
    ADMIN = 'admin'
    MANAGER = 'manager'
    STAFF = 'staff'


@dataclass
class Principal:
    id: int
    username: str
    role: Role
    tenant_id: str
    active: bool = True


def get_current_principal(request: Request) -> Principal:
    # Populated by the session middleware of the hosting application.
    principal = getattr(request.state, 'principal', None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Authentication required')
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Only admins and managers can sync')
        return principal

    return _dep


def check_cron_secret(authorization: str | None, secret: str | None) -> None:
    if not secret:
        raise AuthorizationError('Cron secret is not configured')
    if not authorization or not hmac.compare_digest(authorization, f'Bearer {secret}'):
        raise AuthorizationError('Unauthorized - Invalid cron secret')


def verify_cron_secret(request: Request) -> None:
    try:
        check_cron_secret(request.headers.get('authorization'), settings.cron_secret)
    except AuthorizationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
