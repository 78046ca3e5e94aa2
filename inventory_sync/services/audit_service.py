from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_sync.models import WebhookEvent


def log_webhook_event(
    db: Session,
    *,
    tenant_id: str,
    object_type: str | None,
    object_id: str | None,
    action: str | None,
    payload: dict,
    webhook_type: str = 'poster',
) -> None:
    db.add(
        WebhookEvent(
            tenant_id=tenant_id,
            webhook_type=webhook_type,
            object_type=object_type,
            object_id=object_id,
            action=action,
            payload=payload,
        )
    )


def list_webhook_events(db: Session, *, tenant_id: str, limit: int = 100) -> list[WebhookEvent]:
    return (
        db.execute(
            select(WebhookEvent)
            .where(WebhookEvent.tenant_id == tenant_id)
            .order_by(WebhookEvent.created_at.desc(), WebhookEvent.id.desc())
            .limit(limit)
        )
        .scalars()
        .all()
    )
