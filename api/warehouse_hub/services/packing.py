# warehouse_hub/services/packing.py
"""
Packing tasks: creation, scanning into boxes, Chestny Znak marking codes
and completion with an optional MoySklad shipment (demand).
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from starlette.concurrency import run_in_threadpool

from warehouse_hub.adapters.xlsx_reports import TaskRow
from warehouse_hub.db_models import Product, ProductLocation
from warehouse_hub.db_models_ext import (
    Box, BoxItem, BoxStatus, PackingTask, PackingTaskItem, TaskStatus
)
from warehouse_hub.services.errors import ConflictError, NotFoundError, ValidationFailed
from warehouse_hub.services.identifiers import ProductIdentifierService
from warehouse_hub.services.journal import log_action
from warehouse_hub.services.slots import SlotReconciliationService

logger = logging.getLogger(__name__)


def default_task_name(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"Сборка {now:%d.%m.%Y} {now:%H:%M}"


@dataclass
class UploadResult:
    task: Optional[PackingTask]
    not_found: List[Dict[str, Any]]
    skipped_no_stock: List[Dict[str, Any]]


def _row_dict(row: TaskRow, **extra) -> Dict[str, Any]:
    return {"row": row.row, "barcode": row.barcode, "sku": row.sku, "name": row.name,
            "quantity": row.quantity, **extra}


class PackingService:
    def __init__(
        self,
        db: AsyncSession,
        client=None,
        slot_service: Optional[SlotReconciliationService] = None,
    ):
        self.db = db
        self.client = client
        self.slot_service = slot_service
        self.identifiers = ProductIdentifierService(db)

    # =========================================================================
    # Loading
    # =========================================================================

    async def get_task(self, task_id: int) -> PackingTask:
        stmt = (
            select(PackingTask)
            .options(
                selectinload(PackingTask.items).selectinload(PackingTaskItem.product),
                selectinload(PackingTask.boxes),
            )
            .where(PackingTask.id == task_id)
            .execution_options(populate_existing=True)
        )
        task = (await self.db.execute(stmt)).scalar_one_or_none()
        if task is None:
            raise NotFoundError("Задача не найдена")
        return task

    async def get_active_task(self, task_id: int) -> PackingTask:
        task = await self.get_task(task_id)
        if task.status != TaskStatus.active:
            raise ValidationFailed("Задача не активна")
        return task

    async def list_tasks(self) -> List[Dict[str, Any]]:
        stmt = (
            select(
                PackingTask,
                func.count(PackingTaskItem.id),
                func.coalesce(func.sum(PackingTaskItem.planned_qty), 0),
                func.coalesce(func.sum(PackingTaskItem.scanned_qty), 0),
            )
            .outerjoin(PackingTaskItem, PackingTaskItem.task_id == PackingTask.id)
            .group_by(PackingTask.id)
            .order_by(PackingTask.created_at.desc(), PackingTask.id.desc())
        )
        rows = (await self.db.execute(stmt)).all()
        return [
            {
                "id": task.id,
                "name": task.name,
                "status": task.status.value,
                "created_at": task.created_at,
                "completed_at": task.completed_at,
                "shipment_id": task.shipment_id,
                "items_count": items_count,
                "total_items": int(planned),
                "scanned_items": int(scanned),
            }
            for task, items_count, planned, scanned in rows
        ]

    async def task_detail(self, task_id: int) -> Dict[str, Any]:
        """Task with its lines; lines without stock are reported apart and left out of the totals."""
        task = await self.get_task(task_id)
        cells = await self._cells([i.product_id for i in task.items])

        lines = [self._line(item, cells.get(item.product_id)) for item in task.items]
        lines.sort(key=lambda ln: (ln["cell_address"] or "", ln["name"] or ""))
        visible = [ln for ln in lines if (ln["stock"] or 0) > 0]
        no_stock = [ln for ln in lines if (ln["stock"] or 0) <= 0]

        return {
            "task": {
                "id": task.id,
                "name": task.name,
                "status": task.status.value,
                "created_at": task.created_at,
                "completed_at": task.completed_at,
                "shipment_id": task.shipment_id,
                "total_items": sum(ln["planned_qty"] for ln in visible),
                "scanned_items": sum(ln["scanned_qty"] for ln in visible),
                "no_stock_items": len(no_stock),
            },
            "items": visible,
            "no_stock_items": no_stock,
        }

    async def _cells(self, product_ids: Sequence[str]) -> Dict[str, Optional[str]]:
        if not product_ids:
            return {}
        stmt = select(ProductLocation.product_id, ProductLocation.cell_address).where(
            ProductLocation.product_id.in_(list(product_ids))
        )
        return dict((await self.db.execute(stmt)).all())

    @staticmethod
    def _line(item: PackingTaskItem, cell_address: Optional[str]) -> Dict[str, Any]:
        p = item.product
        return {
            "id": item.id,
            "product_id": item.product_id,
            "name": p.name,
            "barcode": p.barcode,
            "article": p.article,
            "image_url": p.image_url,
            "price": p.price,
            "stock": p.stock,
            "cell_address": cell_address,
            "planned_qty": item.planned_qty,
            "scanned_qty": item.scanned_qty,
            "requires_marking": item.requires_marking,
        }

    # =========================================================================
    # Creation
    # =========================================================================

    async def _create(self, name: str, source: str, lines: Sequence[Tuple[Product, int]]) -> PackingTask:
        merged: Dict[str, Tuple[Product, int]] = {}
        for product, qty in lines:
            prev = merged.get(product.id)
            merged[product.id] = (product, qty + (prev[1] if prev else 0))

        task = PackingTask(name=name, source=source, status=TaskStatus.active, items=[], boxes=[])
        for product, qty in merged.values():
            task.items.append(PackingTaskItem(
                product_id=product.id,
                planned_qty=qty,
                scanned_qty=0,
                requires_marking=bool(product.requires_marking),
            ))
        task.total_items = sum(i.planned_qty for i in task.items)
        self.db.add(task)
        await self.db.flush()

        await log_action(self.db, "packing_task_created", "packing_task", task.id,
                         {"total_quantity": task.total_items, "source": source})
        return task

    async def create_from_rows(self, rows: Sequence[TaskRow], name: Optional[str] = None) -> UploadResult:
        """
        Task from spreadsheet rows.

        Products are matched by barcode, then SKU/article, then name. Products
        without stock are skipped, quantities are capped at the stock on hand.
        Locations of the task's products are refreshed afterwards.
        """
        not_found: List[Dict[str, Any]] = []
        no_stock: List[Dict[str, Any]] = []
        lines: List[Tuple[Product, int]] = []

        for row in rows:
            product = await self.identifiers.find_product(row.barcode, row.sku, row.name)
            if product is None:
                not_found.append(_row_dict(row))
                continue
            available = float(product.stock or 0)
            qty = int(min(row.quantity, available))
            if qty <= 0:
                no_stock.append(_row_dict(row, reason="no_stock", product_id=product.id))
                continue
            lines.append((product, qty))

        if not lines:
            raise ValidationFailed("Не найдено товаров", not_found=not_found, skipped_no_stock=no_stock)

        task = await self._create(name or default_task_name(), "upload", lines)
        if self.slot_service is not None:
            await self.slot_service.reconcile_locations([p.id for p, _ in lines])
        return UploadResult(task=task, not_found=not_found, skipped_no_stock=no_stock)

    async def create_manual(self, items: Sequence[Dict[str, Any]], name: Optional[str] = None) -> PackingTask:
        if not items:
            raise ValidationFailed("Не указаны товары")
        lines: List[Tuple[Product, int]] = []
        for item in items:
            product = await self.db.get(Product, item.get("product_id"))
            if product is not None:
                lines.append((product, int(item.get("quantity") or 1)))
        if not lines:
            raise ValidationFailed("Не найдено товаров")
        return await self._create(name or default_task_name(), "manual", lines)

    async def add_item(self, task_id: int, product_id: str, quantity: int = 1) -> Dict[str, Any]:
        task = await self.get_active_task(task_id)
        product = await self.db.get(Product, product_id)
        if product is None:
            raise NotFoundError("Товар не найден")

        item = next((i for i in task.items if i.product_id == product_id), None)
        if item is not None:
            item.planned_qty += quantity
        else:
            task.items.append(PackingTaskItem(
                product_id=product.id,
                planned_qty=quantity,
                scanned_qty=0,
                requires_marking=bool(product.requires_marking),
            ))
        task.total_items = sum(i.planned_qty for i in task.items)
        await self.db.flush()
        return {"product": product.name, "quantity": quantity, "total_items": task.total_items}

    # =========================================================================
    # Scanning
    # =========================================================================

    async def scan(
        self,
        task_id: int,
        barcode: str,
        box_id: Optional[int] = None,
        marking_code: Optional[str] = None,
    ) -> Dict[str, Any]:
        barcode = (barcode or "").strip()
        marking_code = (marking_code or "").strip() or None
        if not barcode:
            raise ValidationFailed("Не указан штрихкод")

        task = await self.get_active_task(task_id)
        product = await self.identifiers.find_product_by_barcode(barcode)
        if product is None:
            raise NotFoundError("Товар не найден")

        item = next((i for i in task.items if i.product_id == product.id), None)
        if item is None:
            raise ValidationFailed("Товар не в задаче", product=product.name)
        if item.scanned_qty >= item.planned_qty:
            raise ValidationFailed("Товар уже собран", product=product.name)

        if box_id:
            box = await self.db.get(Box, box_id)
            if box is None or box.task_id != task.id:
                raise ValidationFailed("Короб не найден или не относится к задаче")
            if box.status != BoxStatus.open:
                raise ValidationFailed("Короб закрыт")
            if item.requires_marking and not marking_code:
                raise ValidationFailed("Нужен код маркировки (Честный знак)",
                                       requires_marking=True, product=product.name)
            if marking_code:
                used = await self.db.execute(
                    select(BoxItem.id).where(BoxItem.marking_code == marking_code).limit(1)
                )
                if used.scalar_one_or_none() is not None:
                    raise ConflictError("Этот код маркировки уже использован")
            self.db.add(BoxItem(box_id=box.id, product_id=product.id, quantity=1, marking_code=marking_code))

        item.scanned_qty += 1
        await self.db.flush()

        return {
            "product": product.name,
            "product_id": product.id,
            "scanned": item.scanned_qty,
            "quantity": item.planned_qty,
            "complete": item.scanned_qty >= item.planned_qty,
            "box_id": box_id or None,
            "requires_marking": item.requires_marking,
        }

    # =========================================================================
    # Boxes
    # =========================================================================

    async def list_boxes(self, task_id: int) -> Dict[str, Any]:
        task = await self.get_task(task_id)
        stmt = (
            select(BoxItem, Product)
            .join(Box, Box.id == BoxItem.box_id)
            .join(Product, Product.id == BoxItem.product_id)
            .where(Box.task_id == task.id)
            .order_by(Box.number, Product.name, BoxItem.id)
        )
        rows = (await self.db.execute(stmt)).all()

        numbers = {b.id: b.number for b in task.boxes}
        grouped: Dict[Tuple[int, str], Dict[str, Any]] = {}
        per_box: Dict[int, Dict[str, int]] = {b.id: {"items_qty": 0, "scans_count": 0} for b in task.boxes}
        for bi, product in rows:
            per_box[bi.box_id]["items_qty"] += bi.quantity
            per_box[bi.box_id]["scans_count"] += 1
            key = (bi.box_id, product.id)
            g = grouped.get(key)
            if g is None:
                g = grouped[key] = {
                    "box_id": bi.box_id,
                    "box_number": numbers.get(bi.box_id),
                    "product_id": product.id,
                    "name": product.name,
                    "barcode": product.barcode,
                    "qty": 0,
                    "requires_marking": product.requires_marking,
                }
            g["qty"] += bi.quantity

        boxes = [
            {"id": b.id, "task_id": b.task_id, "number": b.number, "status": b.status.value, **per_box[b.id]}
            for b in task.boxes
        ]
        return {"boxes": boxes, "items": list(grouped.values())}

    async def create_box(self, task_id: int) -> Box:
        task = await self.get_active_task(task_id)
        last = await self.db.execute(select(func.max(Box.number)).where(Box.task_id == task.id))
        box = Box(task_id=task.id, number=(last.scalar() or 0) + 1, status=BoxStatus.open)
        self.db.add(box)
        await self.db.flush()
        return box

    async def close_box(self, task_id: int, box_id: int) -> Box:
        task = await self.get_active_task(task_id)
        box = await self.db.get(Box, box_id)
        if box is None or box.task_id != task.id:
            raise ValidationFailed("Короб не найден")

        stmt = (
            select(Product.name, func.count(BoxItem.id))
            .join(Product, Product.id == BoxItem.product_id)
            .where(
                BoxItem.box_id == box.id,
                Product.requires_marking.is_(True),
                func.coalesce(func.trim(BoxItem.marking_code), "") == "",
            )
            .group_by(Product.id, Product.name)
        )
        missing = [{"name": name, "cnt": cnt} for name, cnt in (await self.db.execute(stmt)).all()]
        if missing:
            raise ValidationFailed("В коробе есть маркируемые товары без кода (Честный знак)", missing=missing)

        box.status = BoxStatus.closed
        await self.db.flush()
        return box

    # =========================================================================
    # Completion
    # =========================================================================

    async def complete(self, task_id: int, create_shipment: bool = True) -> Dict[str, Any]:
        task = await self.get_active_task(task_id)

        remaining = [i for i in task.items if i.scanned_qty < i.planned_qty]
        if remaining:
            raise ValidationFailed("Не все позиции собраны", remaining=len(remaining))
        open_boxes = [b for b in task.boxes if b.status != BoxStatus.closed]
        if open_boxes:
            raise ValidationFailed("Закройте все короба перед завершением", open_boxes=len(open_boxes))

        shipment_id = None
        if create_shipment and self.client is not None:
            shipment_id = await self._create_shipment(task)

        task.status = TaskStatus.completed
        task.completed_at = datetime.now(timezone.utc)
        task.packed_items = sum(i.scanned_qty for i in task.items)
        task.shipment_id = shipment_id
        await log_action(self.db, "packing_task_completed", "packing_task", task.id, {"shipment_id": shipment_id})
        await self.db.flush()
        return {"message": "Сборка завершена", "shipment_id": shipment_id}

    async def _create_shipment(self, task: PackingTask) -> Optional[str]:
        """Best-effort demand in MoySklad; the task completes either way."""
        positions = [
            {"product_href": i.product.meta_href, "quantity": i.planned_qty, "price": i.product.price or 0}
            for i in task.items
            if i.product.meta_href
        ]
        if not positions:
            return None
        try:
            store = await run_in_threadpool(self.client.get_default_store)
            organization = await run_in_threadpool(self.client.get_default_organization)
            demand = await run_in_threadpool(
                self.client.create_demand,
                positions,
                store["meta"],
                organization["meta"],
                f"Сборка: {task.name}",
            )
        except Exception as e:
            logger.warning(f"Shipment creation skipped for task {task.id}: {e}")
            return None
        return demand.get("id")
