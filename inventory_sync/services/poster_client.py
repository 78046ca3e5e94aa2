from __future__ import annotations

import json
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from inventory_sync.config import settings
from inventory_sync.errors import ExternalServiceError
from inventory_sync.utils.logger import logger

RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class PosterCategory:
    id: str
    name: str


@dataclass(frozen=True)
class PosterSupplier:
    id: str
    name: str
    phone: str | None = None
    address: str | None = None


@dataclass(frozen=True)
class PosterStorage:
    id: str
    name: str


@dataclass(frozen=True)
class PosterIngredient:
    id: str
    name: str
    unit: str | None = None
    category_id: str | None = None
    category_name: str | None = None


@dataclass(frozen=True)
class PosterLeftover:
    ingredient_id: str
    # Raw POS value; may be a number or text with a comma decimal separator.
    quantity: object = None
    storage_id: str | None = None


@dataclass(frozen=True)
class SupplyOrderItem:
    ingredient_id: str
    quantity: float
    price: float = 0


def _text(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _first(raw: dict, *keys: str):
    for key in keys:
        value = raw.get(key)
        if value not in (None, ''):
            return value
    return None


def normalize_category(raw: dict) -> PosterCategory | None:
    category_id = _text(_first(raw, 'category_id', 'id'))
    if not category_id:
        return None
    name = _text(_first(raw, 'category_name', 'name')) or f'Category {category_id}'
    return PosterCategory(id=category_id, name=name)


def normalize_supplier(raw: dict) -> PosterSupplier | None:
    supplier_id = _text(raw.get('supplier_id'))
    if not supplier_id:
        return None
    return PosterSupplier(
        id=supplier_id,
        name=_text(raw.get('supplier_name')) or f'Supplier {supplier_id}',
        phone=_text(raw.get('supplier_phone')),
        # The POS spells this field both ways.
        address=_text(_first(raw, 'supplier_address', 'supplier_adress')),
    )


def normalize_storage(raw: dict) -> PosterStorage | None:
    storage_id = _text(raw.get('storage_id'))
    if not storage_id:
        return None
    return PosterStorage(id=storage_id, name=_text(raw.get('storage_name')) or f'Storage {storage_id}')


def normalize_ingredient(raw: dict) -> PosterIngredient | None:
    ingredient_id = _text(raw.get('ingredient_id'))
    if not ingredient_id:
        return None
    return PosterIngredient(
        id=ingredient_id,
        name=_text(raw.get('ingredient_name')) or f'Ingredient {ingredient_id}',
        unit=_text(raw.get('ingredient_unit')),
        category_id=_text(_first(raw, 'ingredient_category_id', 'category_id')),
        category_name=_text(raw.get('category_name')),
    )


def normalize_leftover(raw: dict) -> PosterLeftover | None:
    ingredient_id = _text(raw.get('ingredient_id'))
    if not ingredient_id:
        return None
    quantity = raw['ingredient_left'] if 'ingredient_left' in raw else raw.get('leftover')
    return PosterLeftover(ingredient_id=ingredient_id, quantity=quantity, storage_id=_text(raw.get('storage_id')))


def _normalize_list(payload, normalizer: Callable[[dict], object | None], label: str) -> list:
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise ExternalServiceError(f'Invalid {label} response from Poster')
    records = []
    for raw in payload:
        if not isinstance(raw, dict):
            continue
        record = normalizer(raw)
        if record is not None:
            records.append(record)
    return records


@dataclass
class PosterClient:
    base_url: str
    access_token: str = field(repr=False)
    timeout_seconds: int = 30
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def _delay(self, attempt: int, retry_after: str | None = None) -> float:
        if retry_after and retry_after.isdigit():
            return min(float(retry_after), self.retry_max_delay)
        delay = self.retry_base_delay * (2**attempt) + random.uniform(0, self.retry_base_delay)
        return min(delay, self.retry_max_delay)

    def _send(self, method: str, endpoint: str, params: dict | None = None, form: dict | None = None):
        query = dict(params or {})
        data = None
        if method == 'GET':
            query['token'] = self.access_token
        else:
            data = urlencode({**(form or {}), 'token': self.access_token}).encode('utf-8')
        url = f"{self.base_url.rstrip('/')}/{endpoint.lstrip('/')}"
        if query:
            url = f'{url}?{urlencode(query)}'
        headers = {'Accept': 'application/json'}
        if data is not None:
            headers['Content-Type'] = 'application/x-www-form-urlencoded'

        attempt = 0
        while True:
            req = Request(url=url, data=data, headers=headers, method=method)
            try:
                with urlopen(req, timeout=self.timeout_seconds) as response:
                    body = response.read().decode('utf-8')
                break
            except HTTPError as exc:
                detail = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
                if exc.code in RETRYABLE_STATUSES and attempt < self.max_retries:
                    delay = self._delay(attempt, exc.headers.get('Retry-After') if exc.headers else None)
                    logger.warning('Poster %s %s failed with %s, retrying in %.1fs', method, endpoint, exc.code, delay)
                    self.sleep(delay)
                    attempt += 1
                    continue
                if exc.code == 401:
                    raise ExternalServiceError(
                        'Poster authentication failed - please reconnect your Poster account', status_code=401
                    ) from exc
                raise ExternalServiceError(f'Poster API error {exc.code} on {endpoint}: {detail}', status_code=exc.code) from exc
            except (URLError, TimeoutError) as exc:
                if attempt < self.max_retries:
                    delay = self._delay(attempt)
                    logger.warning('Poster %s %s network error, retrying in %.1fs', method, endpoint, delay)
                    self.sleep(delay)
                    attempt += 1
                    continue
                reason = getattr(exc, 'reason', exc)
                raise ExternalServiceError(f'Poster API network error on {endpoint}: {reason}') from exc

        try:
            parsed = json.loads(body)
        except ValueError as exc:
            raise ExternalServiceError(f'Poster API returned malformed JSON on {endpoint}') from exc
        if not isinstance(parsed, dict):
            raise ExternalServiceError(f'Poster API returned an unexpected payload on {endpoint}')
        error = parsed.get('error')
        if error:
            if isinstance(error, dict):
                raise ExternalServiceError(f"Poster API error (code {error.get('code')}) on {endpoint}: {error.get('message')}")
            raise ExternalServiceError(f'Poster API error on {endpoint}: {error}')
        return parsed.get('response')

    def get(self, endpoint: str, params: dict | None = None):
        return self._send('GET', endpoint, params=params)

    def post(self, endpoint: str, form: dict):
        return self._send('POST', endpoint, form=form)

    def get_categories(self) -> list[PosterCategory]:
        return _normalize_list(self.get('menu.getCategories'), normalize_category, 'categories')

    def get_suppliers(self) -> list[PosterSupplier]:
        return _normalize_list(self.get('storage.getSuppliers'), normalize_supplier, 'suppliers')

    def get_ingredients(self) -> list[PosterIngredient]:
        return _normalize_list(self.get('menu.getIngredients'), normalize_ingredient, 'ingredients')

    def get_storages(self) -> list[PosterStorage]:
        return _normalize_list(self.get('storage.getStorages'), normalize_storage, 'storages')

    def get_storage_leftovers(self, storage_id: str | None = None) -> list[PosterLeftover]:
        params = {'storage_id': storage_id} if storage_id is not None else None
        payload = self.get('storage.getStorageLeftovers', params)
        if storage_id is None and not isinstance(payload, list):
            # The account-wide variant answers with an object when it has nothing to report.
            return []
        return _normalize_list(payload, normalize_leftover, 'leftovers')

    def create_supply_order(
        self,
        *,
        supplier_id: int,
        storage_id: int,
        items: list[SupplyOrderItem],
        comment: str | None = None,
    ):
        form = {
            'supplier_id': str(supplier_id),
            'storage_id': str(storage_id),
            'supply': json.dumps(
                [
                    {'product_id': item.ingredient_id, 'count': item.quantity, 'sum': (item.price or 0) * item.quantity}
                    for item in items
                ]
            ),
        }
        if comment:
            form['comment'] = comment
        return self.post('storage.createSupplyOrder', form)


def poster_base_url(account_name: str | None) -> str:
    if account_name:
        return f'https://{account_name}.joinposter.com/api'
    return settings.poster_api_base_url


def build_poster_client(*, access_token: str, account_name: str | None = None) -> PosterClient:
    return PosterClient(
        base_url=poster_base_url(account_name),
        access_token=access_token,
        timeout_seconds=settings.poster_timeout_seconds,
        max_retries=settings.poster_max_retries,
        retry_base_delay=settings.poster_retry_base_delay_seconds,
        retry_max_delay=settings.poster_retry_max_delay_seconds,
    )
