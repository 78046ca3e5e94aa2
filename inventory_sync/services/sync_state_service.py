from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_sync.models import SyncState


def now_utc() -> datetime:
    return datetime.now(tz=timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_stale(last_synced_at: datetime | None, threshold_minutes: int, *, now: datetime | None = None) -> bool:
    if last_synced_at is None:
        return True
    now = now or now_utc()
    return now - as_utc(last_synced_at) >= timedelta(minutes=threshold_minutes)


def age_minutes(last_synced_at: datetime | None, *, now: datetime | None = None) -> int | None:
    if last_synced_at is None:
        return None
    now = now or now_utc()
    return int((now - as_utc(last_synced_at)).total_seconds() // 60)


def _get_state(db: Session, tenant_id: str, entity_type: str) -> SyncState | None:
    return db.execute(
        select(SyncState).where(SyncState.tenant_id == tenant_id, SyncState.entity_type == entity_type)
    ).scalar_one_or_none()


def get_last_synced_at(db: Session, tenant_id: str, entity_type: str) -> datetime | None:
    state = _get_state(db, tenant_id, entity_type)
    if state is None or state.last_synced_at is None:
        return None
    return as_utc(state.last_synced_at)


def load_last_synced(db: Session, tenant_id: str) -> dict[str, datetime]:
    rows = db.execute(select(SyncState).where(SyncState.tenant_id == tenant_id)).scalars().all()
    return {row.entity_type: as_utc(row.last_synced_at) for row in rows if row.last_synced_at is not None}


def needs_sync(
    db: Session,
    tenant_id: str,
    entity_type: str,
    threshold_minutes: int,
    *,
    now: datetime | None = None,
) -> bool:
    return is_stale(get_last_synced_at(db, tenant_id, entity_type), threshold_minutes, now=now)


def _get_or_create_state(db: Session, tenant_id: str, entity_type: str) -> SyncState:
    state = _get_state(db, tenant_id, entity_type)
    if state is None:
        state = SyncState(tenant_id=tenant_id, entity_type=entity_type, sync_count=0)
        db.add(state)
    return state


def mark_synced(db: Session, tenant_id: str, entity_type: str, *, now: datetime | None = None) -> None:
    state = _get_or_create_state(db, tenant_id, entity_type)
    state.last_synced_at = now or now_utc()
    state.last_sync_success = True
    state.last_sync_error = None
    state.sync_count = (state.sync_count or 0) + 1
    db.flush()


def mark_failed(db: Session, tenant_id: str, entity_type: str, error: str) -> None:
    state = _get_or_create_state(db, tenant_id, entity_type)
    state.last_sync_success = False
    state.last_sync_error = error
    state.sync_count = (state.sync_count or 0) + 1
    db.flush()
