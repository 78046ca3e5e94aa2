from __future__ import annotations

from collections.abc import Callable

from inventory_sync.db import TenantGateway, gateway
from inventory_sync.services.credential_service import TenantCredential, client_for
from inventory_sync.services.poster_client import PosterClient


def get_gateway() -> TenantGateway:
    return gateway


def get_client_factory() -> Callable[[TenantCredential], PosterClient]:
    return client_for
