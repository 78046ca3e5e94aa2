from __future__ import annotations

from inventory_sync.errors import ValidationError
from inventory_sync.services.poster_client import PosterClient, SupplyOrderItem
from inventory_sync.utils.logger import logger

DEFAULT_STORAGE_ID = 1
DEFAULT_COMMENT = 'Order from the app'


def build_supply_items(items) -> list[SupplyOrderItem]:
    if not isinstance(items, list) or not items:
        raise ValidationError('items must be a non-empty list')
    parsed: list[SupplyOrderItem] = []
    for item in items:
        if not isinstance(item, dict) or not item.get('ingredient_id'):
            raise ValidationError('every item needs an ingredient_id')
        try:
            quantity = float(item.get('quantity'))
            price = float(item.get('price') or 0)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"invalid quantity or price for ingredient {item.get('ingredient_id')}") from exc
        if quantity <= 0:
            raise ValidationError(f"quantity must be positive for ingredient {item.get('ingredient_id')}")
        parsed.append(SupplyOrderItem(ingredient_id=str(item['ingredient_id']), quantity=quantity, price=price))
    return parsed


def send_supply_order(
    client: PosterClient,
    *,
    supplier_id,
    storage_id=None,
    items,
    comment: str | None = None,
):
    try:
        supplier = int(supplier_id)
    except (TypeError, ValueError) as exc:
        raise ValidationError('supplier_id is required') from exc
    try:
        storage = int(storage_id) if storage_id else DEFAULT_STORAGE_ID
    except (TypeError, ValueError) as exc:
        raise ValidationError('storage_id must be numeric') from exc

    supply_items = build_supply_items(items)
    logger.info('Sending supply order to Poster: supplier=%s storage=%s items=%s', supplier, storage, len(supply_items))
    return client.create_supply_order(
        supplier_id=supplier,
        storage_id=storage,
        items=supply_items,
        comment=comment or DEFAULT_COMMENT,
    )
