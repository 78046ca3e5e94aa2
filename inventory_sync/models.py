from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
    func,
    true,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
Id = BigInteger().with_variant(Integer(), 'sqlite')

CUSTOM_INGREDIENT_PREFIX = 'custom_'


class Base(DeclarativeBase):
    pass


class EntityType(str, Enum):
    CATEGORIES = 'categories'
    SUPPLIERS = 'suppliers'
    STORAGES = 'storages'
    INGREDIENTS = 'ingredients'


class Restaurant(Base):
    __tablename__ = 'restaurants'

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PosterCredential(Base):
    __tablename__ = 'poster_tokens'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(Text, ForeignKey('restaurants.id', ondelete='CASCADE'), nullable=False, index=True)
    account_id: Mapped[str | None] = mapped_column(Text, index=True)
    account_name: Mapped[str | None] = mapped_column(Text)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Supplier(Base):
    __tablename__ = 'suppliers'
    __table_args__ = (UniqueConstraint('tenant_id', 'external_id', name='uq_suppliers_tenant_external'),)

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[str | None] = mapped_column(Text)
    contact_info: Mapped[str | None] = mapped_column(Text)
    external_id: Mapped[str | None] = mapped_column(Text)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())


class Category(Base):
    __tablename__ = 'product_categories'
    __table_args__ = (UniqueConstraint('tenant_id', 'name', name='uq_product_categories_tenant_name'),)

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    default_supplier_id: Mapped[int | None] = mapped_column(Id, ForeignKey('suppliers.id', ondelete='SET NULL'))


class StorageSection(Base):
    __tablename__ = 'sections'
    __table_args__ = (UniqueConstraint('tenant_id', 'external_storage_id', name='uq_sections_tenant_storage'),)

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    emoji: Mapped[str] = mapped_column(Text, nullable=False, default='📍')
    external_storage_id: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())

    @property
    def external_id(self) -> str | None:
        return self.external_storage_id


class SectionProduct(Base):
    __tablename__ = 'section_products'
    __table_args__ = (
        UniqueConstraint('section_id', 'external_ingredient_id', name='uq_section_products_section_ingredient'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    section_id: Mapped[int] = mapped_column(Id, ForeignKey('sections.id'), nullable=False, index=True)
    external_ingredient_id: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    unit: Mapped[str | None] = mapped_column(Text)
    category_id: Mapped[int | None] = mapped_column(Id, ForeignKey('product_categories.id', ondelete='SET NULL'))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_custom(self) -> bool:
        return self.external_ingredient_id.startswith(CUSTOM_INGREDIENT_PREFIX)


class SyncState(Base):
    __tablename__ = 'poster_sync_status'
    __table_args__ = (UniqueConstraint('tenant_id', 'entity_type', name='uq_poster_sync_status_tenant_entity'),)

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_sync_success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    last_sync_error: Mapped[str | None] = mapped_column(Text)
    sync_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())


class WebhookEvent(Base):
    __tablename__ = 'webhook_logs'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    # Not a foreign key: unmatched events are stored under a sentinel tenant.
    tenant_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    webhook_type: Mapped[str] = mapped_column(Text, nullable=False, default='poster')
    object_type: Mapped[str | None] = mapped_column(Text)
    object_id: Mapped[str | None] = mapped_column(Text)
    action: Mapped[str | None] = mapped_column(Text)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
