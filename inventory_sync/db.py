from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from inventory_sync.config import settings

engine = create_engine(settings.database_url_normalized, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


class TenantGateway:
    """Hands out transactional units of work, scoped to one tenant or to none.

    Each ``with`` block is one transaction: it commits when the block exits
    normally and rolls back on any exception before re-raising it.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    @contextmanager
    def with_tenant(self, tenant_id: str) -> Iterator[Session]:
        with self.session_factory() as db:
            with db.begin():
                db.info['tenant_id'] = tenant_id
                if db.get_bind().dialect.name == 'postgresql':
                    # Row level security policies read this setting.
                    db.execute(text("SELECT set_config('app.current_tenant', :tenant_id, true)"), {'tenant_id': tenant_id})
                yield db

    @contextmanager
    def without_tenant(self) -> Iterator[Session]:
        with self.session_factory() as db:
            with db.begin():
                yield db


gateway = TenantGateway(SessionLocal)
