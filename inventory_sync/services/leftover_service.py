from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor

from inventory_sync.config import settings
from inventory_sync.services.poster_client import PosterClient, PosterLeftover
from inventory_sync.utils.logger import logger


def parse_quantity(raw) -> float | None:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        raw = raw.strip().replace(',', '.')
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def aggregate_leftovers(entries: Iterable[PosterLeftover]) -> dict[str, float]:
    quantities: dict[str, list[float]] = defaultdict(list)
    for entry in entries:
        value = parse_quantity(entry.quantity)
        if value is None:
            continue
        quantities[str(entry.ingredient_id)].append(value)
    # fsum is exactly rounded, so the totals do not depend on fetch order.
    return {ingredient_id: math.fsum(values) for ingredient_id, values in quantities.items()}


def fetch_storage_leftovers_safe(client: PosterClient, storage_id: str) -> list[PosterLeftover]:
    try:
        return client.get_storage_leftovers(storage_id)
    except Exception:
        logger.warning('Leftovers fetch failed for storage %s, counting it as empty', storage_id, exc_info=True)
        return []


def fetch_leftovers_by_storage(
    client: PosterClient,
    storage_ids: Iterable[str],
    *,
    max_workers: int | None = None,
) -> dict[str, list[PosterLeftover]]:
    storage_ids = list(dict.fromkeys(str(storage_id) for storage_id in storage_ids))
    if not storage_ids:
        return {}
    workers = max(1, min(max_workers or settings.leftover_max_workers, len(storage_ids)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(lambda storage_id: fetch_storage_leftovers_safe(client, storage_id), storage_ids))
    return dict(zip(storage_ids, results))


def fetch_all_leftovers(client: PosterClient, *, max_workers: int | None = None) -> list[PosterLeftover]:
    try:
        entries = client.get_storage_leftovers()
    except Exception:
        logger.warning('Account-wide leftovers call failed, falling back to per-storage calls', exc_info=True)
        entries = []
    if entries:
        return entries

    storages = client.get_storages()
    by_storage = fetch_leftovers_by_storage(client, [storage.id for storage in storages], max_workers=max_workers)
    return [entry for storage_entries in by_storage.values() for entry in storage_entries]


def get_stock(client: PosterClient, *, max_workers: int | None = None) -> dict[str, float]:
    return aggregate_leftovers(fetch_all_leftovers(client, max_workers=max_workers))
