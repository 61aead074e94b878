# warehouse_hub/db_models.py
"""
SQLAlchemy ORM models for Warehouse Hub: catalog side.

Products mirror the MoySklad assortment (primary key is the vendor UUID),
locations are kept in their own table so stock sync and slot reconciliation
never overwrite each other.
"""
from __future__ import annotations
from datetime import datetime
from typing import Optional, List
import enum

from sqlalchemy import (
    String, Integer, BigInteger, Boolean, Text, DateTime, Float,
    ForeignKey, Index, UniqueConstraint, CheckConstraint,
    Enum as SQLEnum, JSON, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import JSONB

from warehouse_hub.database import Base

# BIGSERIAL on PostgreSQL, INTEGER PRIMARY KEY (rowid) on sqlite
BigIntPK = BigInteger().with_variant(Integer, "sqlite")
JSONType = JSON().with_variant(JSONB, "postgresql")

# ============================================================================
# ENUMS
# ============================================================================

class BarcodeType(str, enum.Enum):
    EAN13 = "EAN13"
    EAN8 = "EAN8"
    CODE128 = "CODE128"


class SyncState(str, enum.Enum):
    never = "never"
    syncing = "syncing"
    success = "success"
    error = "error"


# ============================================================================
# MIXIN for updated_at
# ============================================================================

class TimestampMixin:
    """Mixin for created_at and updated_at columns."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


# ============================================================================
# 1. PRODUCTS
# ============================================================================

class Product(TimestampMixin, Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    article: Mapped[Optional[str]] = mapped_column(String(255))
    sku: Mapped[Optional[str]] = mapped_column(String(255))
    barcode: Mapped[Optional[str]] = mapped_column(String(100))
    price: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    stock: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(Text)
    meta_href: Mapped[Optional[str]] = mapped_column(Text)
    requires_marking: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Relationships
    barcodes: Mapped[List["ProductBarcode"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan"
    )
    location: Mapped[Optional["ProductLocation"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
        uselist=False,
    )

    __table_args__ = (
        Index("idx_products_sku", "sku"),
        Index("idx_products_article", "article"),
        Index("idx_products_barcode", "barcode"),
    )


# ============================================================================
# 2. PRODUCT BARCODES (product + pack barcodes)
# ============================================================================

class ProductBarcode(Base):
    __tablename__ = "product_barcodes"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    barcode: Mapped[str] = mapped_column(String(100), nullable=False)
    barcode_type: Mapped[Optional[BarcodeType]] = mapped_column(SQLEnum(BarcodeType, name="barcode_type"))
    pack_name: Mapped[Optional[str]] = mapped_column(String(255))

    product: Mapped["Product"] = relationship(back_populates="barcodes")

    __table_args__ = (
        UniqueConstraint("product_id", "barcode", name="uq_product_barcodes"),
        Index("idx_product_barcodes_barcode", "barcode"),
    )


# ============================================================================
# 3. PRODUCT LOCATIONS (one resolved cell per product)
# ============================================================================

class ProductLocation(Base):
    __tablename__ = "product_locations"

    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id", ondelete="CASCADE"), primary_key=True
    )
    cell_address: Mapped[Optional[str]] = mapped_column(String(255))
    slot_id: Mapped[Optional[str]] = mapped_column(String(36))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    product: Mapped["Product"] = relationship(back_populates="location")


# ============================================================================
# 4. PURCHASE ORDERS (supplier orders from MoySklad)
# ============================================================================

class PurchaseOrder(TimestampMixin, Base):
    __tablename__ = "purchase_orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    moment: Mapped[Optional[str]] = mapped_column(String(50))
    supplier_name: Mapped[Optional[str]] = mapped_column(String(500))
    total_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    meta_href: Mapped[Optional[str]] = mapped_column(Text)
    # raw vendor meta blocks, sent back untouched when creating a supply
    agent_meta: Mapped[Optional[dict]] = mapped_column(JSONType)
    organization_meta: Mapped[Optional[dict]] = mapped_column(JSONType)
    store_meta: Mapped[Optional[dict]] = mapped_column(JSONType)

    items: Mapped[List["PurchaseOrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_purchase_orders_moment", "moment"),
    )


class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    ordered_qty: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    order: Mapped["PurchaseOrder"] = relationship(back_populates="items")
    product: Mapped["Product"] = relationship()

    __table_args__ = (
        Index("idx_purchase_order_items_order", "order_id"),
    )


# ============================================================================
# 5. SYNC STATUS (single row, id = 1)
# ============================================================================

class SyncStatus(Base):
    __tablename__ = "sync_status"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    last_sync: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    products_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    orders_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[SyncState] = mapped_column(
        SQLEnum(SyncState, name="sync_state"),
        default=SyncState.never,
        nullable=False
    )
    message: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("id = 1", name="chk_sync_status_single_row"),
    )


# ============================================================================
# 6. ACTION LOGS (business journal)
# ============================================================================

class ActionLog(Base):
    __tablename__ = "action_logs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[Optional[str]] = mapped_column(String(50))
    entity_id: Mapped[Optional[str]] = mapped_column(String(100))
    details: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_action_logs_created", "created_at"),
        Index("idx_action_logs_entity", "entity_type", "entity_id"),
    )


# ============================================================================
# 7. APP SETTINGS (key/value, editable from the UI)
# ============================================================================

class AppSetting(Base):
    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[Optional[str]] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        onupdate=func.now(),
        nullable=False
    )
