# warehouse_hub/db_models_ext.py
"""
SQLAlchemy ORM models for Warehouse Hub: workflow side.

Packing tasks (with boxes and marking codes) and receiving sessions.
"""
from __future__ import annotations
from datetime import datetime
from typing import Optional, List
import enum

from sqlalchemy import (
    String, Integer, Boolean, Text, DateTime, Float,
    ForeignKey, Index, CheckConstraint, UniqueConstraint,
    Enum as SQLEnum, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from warehouse_hub.database import Base
from warehouse_hub.db_models import BigIntPK, Product, PurchaseOrder


# ============================================================================
# ENUMS
# ============================================================================

class TaskStatus(str, enum.Enum):
    active = "active"
    completed = "completed"


class BoxStatus(str, enum.Enum):
    open = "open"
    closed = "closed"


class ReceivingStatus(str, enum.Enum):
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


# ============================================================================
# 8. PACKING TASKS
# ============================================================================

class PackingTask(Base):
    __tablename__ = "packing_tasks"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    source: Mapped[Optional[str]] = mapped_column(String(50))
    status: Mapped[TaskStatus] = mapped_column(
        SQLEnum(TaskStatus, name="task_status"),
        default=TaskStatus.active,
        nullable=False
    )
    total_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    packed_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    shipment_id: Mapped[Optional[str]] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    items: Mapped[List["PackingTaskItem"]] = relationship(
        back_populates="task",
        cascade="all, delete-orphan"
    )
    boxes: Mapped[List["Box"]] = relationship(
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="Box.number",
    )

    __table_args__ = (
        Index("idx_packing_tasks_created", "created_at"),
    )


class PackingTaskItem(Base):
    __tablename__ = "packing_task_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    task_id: Mapped[int] = mapped_column(ForeignKey("packing_tasks.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    planned_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    scanned_qty: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    requires_marking: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    task: Mapped["PackingTask"] = relationship(back_populates="items")
    product: Mapped["Product"] = relationship()

    __table_args__ = (
        CheckConstraint("planned_qty > 0", name="chk_planned_qty_positive"),
        CheckConstraint("scanned_qty >= 0", name="chk_scanned_qty_non_negative"),
        UniqueConstraint("task_id", "product_id", name="uq_packing_task_items_product"),
        Index("idx_packing_task_items_task", "task_id"),
    )


# ============================================================================
# 9. BOXES
# ============================================================================

class Box(Base):
    __tablename__ = "boxes"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    task_id: Mapped[int] = mapped_column(ForeignKey("packing_tasks.id", ondelete="CASCADE"), nullable=False)
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[BoxStatus] = mapped_column(
        SQLEnum(BoxStatus, name="box_status"),
        default=BoxStatus.open,
        nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), nullable=False)

    task: Mapped["PackingTask"] = relationship(back_populates="boxes")
    items: Mapped[List["BoxItem"]] = relationship(back_populates="box", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("task_id", "number", name="uq_boxes_task_number"),
    )


class BoxItem(Base):
    __tablename__ = "box_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    box_id: Mapped[int] = mapped_column(ForeignKey("boxes.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    # Chestny Znak marking code; one physical item each
    marking_code: Mapped[Optional[str]] = mapped_column(Text, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), nullable=False)

    box: Mapped["Box"] = relationship(back_populates="items")
    product: Mapped["Product"] = relationship()


# ============================================================================
# 10. RECEIVING SESSIONS
# ============================================================================

class ReceivingSession(Base):
    __tablename__ = "receiving_sessions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    purchase_order_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("purchase_orders.id", ondelete="SET NULL")
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[ReceivingStatus] = mapped_column(
        SQLEnum(ReceivingStatus, name="receiving_status"),
        default=ReceivingStatus.active,
        nullable=False
    )
    total_ordered: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_received: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    supply_id: Mapped[Optional[str]] = mapped_column(String(36))
    enter_id: Mapped[Optional[str]] = mapped_column(String(36))
    # single-step undo of the last scan
    last_scan_item_id: Mapped[Optional[int]] = mapped_column(Integer)
    last_scan_qty: Mapped[Optional[float]] = mapped_column(Float)
    last_scan_prev_qty: Mapped[Optional[float]] = mapped_column(Float)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    purchase_order: Mapped[Optional["PurchaseOrder"]] = relationship()
    items: Mapped[List["ReceivingItem"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_receiving_sessions_status", "status"),
    )


class ReceivingItem(Base):
    __tablename__ = "receiving_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("receiving_sessions.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    ordered_qty: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    received_qty: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    defect_qty: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    # not in the purchase order (re-grading / surplus)
    is_extra: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    session: Mapped["ReceivingSession"] = relationship(back_populates="items")
    product: Mapped["Product"] = relationship()

    __table_args__ = (
        CheckConstraint("received_qty >= 0", name="chk_received_qty_non_negative"),
        CheckConstraint("defect_qty >= 0", name="chk_defect_qty_non_negative"),
        UniqueConstraint("session_id", "product_id", name="uq_receiving_items_product"),
        Index("idx_receiving_items_session", "session_id"),
    )
