# warehouse_hub/services/receiving.py
"""
Receiving sessions against MoySklad purchase orders.

Scans add to the ordered line of the product, or create an "extra" line
(re-grading / surplus) when the product was not ordered. The last scan can be
undone once. Completion posts a supply for ordered lines (defects listed in
its description) and an enter for extra lines.
"""
from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from starlette.concurrency import run_in_threadpool

from warehouse_hub.db_models import Product, PurchaseOrder, PurchaseOrderItem
from warehouse_hub.db_models_ext import ReceivingItem, ReceivingSession, ReceivingStatus
from warehouse_hub.services.errors import NotFoundError, UpstreamUnavailableError, ValidationFailed
from warehouse_hub.services.identifiers import ProductIdentifierService
from warehouse_hub.services.journal import log_action

logger = logging.getLogger(__name__)


def defect_comment(items: List[ReceivingItem]) -> str:
    defects = [i for i in items if (i.defect_qty or 0) > 0]
    if not defects:
        return ""
    lines = [f"• {i.product.article or i.product.name}: {i.defect_qty:g} шт" for i in defects]
    return "БРАК:\n" + "\n".join(lines)


def _positions(items: List[ReceivingItem]) -> List[Dict[str, Any]]:
    out = []
    for i in items:
        if not i.product.meta_href:
            logger.warning(f"Product {i.product_id} has no MoySklad href; left out of the document")
            continue
        out.append({"product_href": i.product.meta_href, "quantity": i.received_qty, "price": i.product.price or 0})
    return out


class ReceivingService:
    def __init__(self, db: AsyncSession, client=None):
        self.db = db
        self.client = client
        self.identifiers = ProductIdentifierService(db)

    # =========================================================================
    # Purchase orders
    # =========================================================================

    async def list_orders(self, limit: int = 100) -> List[Dict[str, Any]]:
        stmt = (
            select(
                PurchaseOrder,
                func.count(PurchaseOrderItem.id),
                func.coalesce(func.sum(PurchaseOrderItem.ordered_qty), 0),
            )
            .outerjoin(PurchaseOrderItem, PurchaseOrderItem.order_id == PurchaseOrder.id)
            .group_by(PurchaseOrder.id)
            .order_by(PurchaseOrder.moment.desc())
            .limit(limit)
        )
        return [
            {
                "id": order.id,
                "name": order.name,
                "moment": order.moment,
                "supplier_name": order.supplier_name,
                "total_items": order.total_items,
                "items_count": items_count,
                "total_qty": float(total_qty),
            }
            for order, items_count, total_qty in (await self.db.execute(stmt)).all()
        ]

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        stmt = (
            select(PurchaseOrder)
            .options(selectinload(PurchaseOrder.items).selectinload(PurchaseOrderItem.product))
            .where(PurchaseOrder.id == order_id)
        )
        order = (await self.db.execute(stmt)).scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order not found")
        return {
            "id": order.id,
            "name": order.name,
            "moment": order.moment,
            "supplier_name": order.supplier_name,
            "total_items": order.total_items,
            "items": [
                {
                    "id": i.id,
                    "product_id": i.product_id,
                    "ordered_qty": i.ordered_qty,
                    "name": i.product.name,
                    "barcode": i.product.barcode,
                    "article": i.product.article,
                    "sku": i.product.sku,
                    "image_url": i.product.image_url,
                }
                for i in order.items
            ],
        }

    # =========================================================================
    # Sessions
    # =========================================================================

    async def get_session(self, session_id: int) -> ReceivingSession:
        stmt = (
            select(ReceivingSession)
            .options(
                selectinload(ReceivingSession.items).selectinload(ReceivingItem.product),
                selectinload(ReceivingSession.purchase_order),
            )
            .where(ReceivingSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        session = (await self.db.execute(stmt)).scalar_one_or_none()
        if session is None:
            raise NotFoundError("Session not found")
        return session

    async def get_active_session(self, session_id: int) -> ReceivingSession:
        session = await self.get_session(session_id)
        if session.status != ReceivingStatus.active:
            raise ValidationFailed("Session not active")
        return session

    @staticmethod
    def _summary(session: ReceivingSession) -> Dict[str, Any]:
        order = session.purchase_order
        return {
            "id": session.id,
            "name": session.name,
            "status": session.status.value,
            "purchase_order_id": session.purchase_order_id,
            "order_name": order.name if order else None,
            "supplier_name": order.supplier_name if order else None,
            "total_ordered": session.total_ordered,
            "total_received": session.total_received,
            "supply_id": session.supply_id,
            "enter_id": session.enter_id,
            "can_undo": session.last_scan_item_id is not None,
            "created_at": session.created_at,
            "completed_at": session.completed_at,
        }

    async def list_sessions(self) -> List[Dict[str, Any]]:
        stmt = (
            select(ReceivingSession)
            .options(selectinload(ReceivingSession.purchase_order))
            .order_by(ReceivingSession.created_at.desc(), ReceivingSession.id.desc())
        )
        return [self._summary(s) for s in (await self.db.execute(stmt)).scalars()]

    async def session_detail(self, session_id: int) -> Dict[str, Any]:
        session = await self.get_session(session_id)
        items = sorted(session.items, key=lambda i: (i.is_extra, i.product.name or ""))
        return {
            **self._summary(session),
            "items": [
                {
                    "id": i.id,
                    "product_id": i.product_id,
                    "name": i.product.name,
                    "barcode": i.product.barcode,
                    "article": i.product.article,
                    "sku": i.product.sku,
                    "image_url": i.product.image_url,
                    "price": i.product.price,
                    "ordered_qty": i.ordered_qty,
                    "received_qty": i.received_qty,
                    "defect_qty": i.defect_qty,
                    "is_extra": i.is_extra,
                }
                for i in items
            ],
        }

    async def create_session(self, purchase_order_id: Optional[str] = None) -> ReceivingSession:
        session = ReceivingSession(
            name=f"Приемка {datetime.now():%d.%m.%Y}",
            status=ReceivingStatus.active,
            total_ordered=0.0,
            total_received=0.0,
            items=[],
        )
        if purchase_order_id:
            stmt = (
                select(PurchaseOrder)
                .options(selectinload(PurchaseOrder.items))
                .where(PurchaseOrder.id == purchase_order_id)
            )
            order = (await self.db.execute(stmt)).scalar_one_or_none()
            if order is None:
                raise NotFoundError("Order not found")
            session.purchase_order_id = order.id
            session.name = f"Приемка: {order.name}"
            # an order can list the same product twice
            ordered: Dict[str, float] = {}
            for oi in order.items:
                ordered[oi.product_id] = ordered.get(oi.product_id, 0.0) + (oi.ordered_qty or 0.0)
            for product_id, qty in ordered.items():
                session.items.append(ReceivingItem(
                    product_id=product_id,
                    ordered_qty=qty,
                    received_qty=0.0,
                    defect_qty=0.0,
                    is_extra=False,
                ))
            session.total_ordered = sum(ordered.values())

        self.db.add(session)
        await self.db.flush()
        await log_action(self.db, "receiving_session_created", "receiving_session", session.id,
                         {"purchase_order_id": purchase_order_id})
        return session

    @staticmethod
    def _recount(session: ReceivingSession) -> None:
        session.total_received = sum(i.received_qty for i in session.items)

    @staticmethod
    def _forget_last_scan(session: ReceivingSession) -> None:
        session.last_scan_item_id = None
        session.last_scan_qty = None
        session.last_scan_prev_qty = None

    # =========================================================================
    # Scanning
    # =========================================================================

    async def scan(self, session_id: int, barcode: str, quantity: float = 1.0) -> Dict[str, Any]:
        session = await self.get_active_session(session_id)
        product = await self.identifiers.find_product_by_barcode(barcode)
        if product is None:
            raise NotFoundError("Product not found")

        item = next((i for i in session.items if i.product_id == product.id), None)
        prev_qty = 0.0
        if item is not None:
            prev_qty = item.received_qty
            item.received_qty += quantity
        else:
            item = ReceivingItem(
                product_id=product.id,
                ordered_qty=0.0,
                received_qty=quantity,
                defect_qty=0.0,
                is_extra=True,
            )
            session.items.append(item)
        await self.db.flush()

        session.last_scan_item_id = item.id
        session.last_scan_qty = quantity
        session.last_scan_prev_qty = prev_qty
        self._recount(session)
        await self.db.flush()

        return {
            "product": product.name,
            "ordered": item.ordered_qty,
            "received": item.received_qty,
            "is_extra": item.is_extra,
            "can_undo": True,
        }

    async def undo_last_scan(self, session_id: int) -> Dict[str, Any]:
        session = await self.get_active_session(session_id)
        if session.last_scan_item_id is None:
            raise ValidationFailed("Нечего отменять")
        item = next((i for i in session.items if i.id == session.last_scan_item_id), None)
        if item is None:
            raise ValidationFailed("Item not found")

        undone = session.last_scan_qty
        name = item.product.name
        if item.is_extra and item.received_qty == session.last_scan_qty:
            session.items.remove(item)
        else:
            item.received_qty = session.last_scan_prev_qty or 0.0

        self._forget_last_scan(session)
        self._recount(session)
        await self.db.flush()
        return {"message": f"Отменено: {name}", "undone_qty": undone}

    # =========================================================================
    # Manual edits
    # =========================================================================

    def _item(self, session: ReceivingSession, item_id: int) -> ReceivingItem:
        item = next((i for i in session.items if i.id == item_id), None)
        if item is None:
            raise NotFoundError("Item not found")
        return item

    async def update_item(
        self,
        session_id: int,
        item_id: int,
        received_qty: Optional[float] = None,
        defect_qty: Optional[float] = None,
    ) -> ReceivingItem:
        if received_qty is not None and received_qty < 0:
            raise ValidationFailed("Invalid quantity")
        session = await self.get_session(session_id)
        item = self._item(session, item_id)
        if received_qty is not None:
            item.received_qty = received_qty
            # undo would restore a count from before this edit
            self._forget_last_scan(session)
        if defect_qty is not None:
            item.defect_qty = max(0.0, defect_qty)
        self._recount(session)
        await self.db.flush()
        return item

    async def set_defect(self, session_id: int, item_id: int, defect_qty: float) -> Dict[str, Any]:
        session = await self.get_session(session_id)
        item = self._item(session, item_id)
        item.defect_qty = max(0.0, defect_qty or 0.0)
        await self.db.flush()
        return {"product": item.product.name, "article": item.product.article, "defect_qty": item.defect_qty}

    async def add_item(self, session_id: int, product_id: str, quantity: float, is_extra: bool = True) -> Dict[str, Any]:
        session = await self.get_active_session(session_id)
        product = await self.db.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")

        item = next((i for i in session.items if i.product_id == product_id), None)
        if item is not None:
            item.received_qty += quantity
        else:
            session.items.append(ReceivingItem(
                product_id=product_id,
                ordered_qty=0.0,
                received_qty=quantity,
                defect_qty=0.0,
                is_extra=is_extra,
            ))
        self._forget_last_scan(session)
        self._recount(session)
        await self.db.flush()
        return {"product": product.name, "quantity": quantity, "is_extra": is_extra}

    # =========================================================================
    # Completion
    # =========================================================================

    async def _default_meta(self, getter) -> Optional[Dict[str, Any]]:
        entity = await run_in_threadpool(getter)
        return (entity or {}).get("meta")

    async def complete(self, session_id: int) -> Dict[str, Any]:
        session = await self.get_active_session(session_id)
        received = [i for i in session.items if i.received_qty > 0]
        if not received:
            raise ValidationFailed("No items received")
        if self.client is None:
            raise UpstreamUnavailableError("MoySklad client not configured")

        main_items = [i for i in received if not i.is_extra]
        extra_items = [i for i in received if i.is_extra]
        order = session.purchase_order

        # a document posted by an earlier attempt keeps its committed id and is skipped
        try:
            organization_meta = (order.organization_meta if order else None) \
                or await self._default_meta(self.client.get_default_organization)
            store_meta = (order.store_meta if order else None) \
                or await self._default_meta(self.client.get_default_store)

            if main_items and not session.supply_id:
                agent_meta = (order.agent_meta if order else None) \
                    or await self._default_meta(self.client.get_default_agent)
                if not agent_meta:
                    raise ValidationFailed("Не найден контрагент для приёмки")
                order_meta = None
                if order and order.meta_href:
                    order_meta = {"href": order.meta_href, "type": "purchaseorder", "mediaType": "application/json"}
                supply = await run_in_threadpool(
                    self.client.create_supply,
                    _positions(main_items),
                    agent_meta,
                    organization_meta,
                    store_meta,
                    order_meta,
                    defect_comment(session.items) or None,
                )
                session.supply_id = supply.get("id")
                await self.db.commit()

            if extra_items and not session.enter_id:
                enter = await run_in_threadpool(
                    self.client.create_enter,
                    _positions(extra_items),
                    organization_meta,
                    store_meta,
                    "Пересорт при приемке",
                )
                session.enter_id = enter.get("id")
                await self.db.commit()
        except ValidationFailed:
            raise
        except Exception as e:
            logger.exception(f"Receiving session {session.id}: MoySklad document failed")
            raise UpstreamUnavailableError(f"MoySklad document creation failed: {e}") from e

        supply_id, enter_id = session.supply_id, session.enter_id
        session.status = ReceivingStatus.completed
        session.completed_at = datetime.now(timezone.utc)
        await log_action(self.db, "receiving_completed", "receiving_session", session.id,
                         {"supply_id": supply_id, "enter_id": enter_id})
        await self.db.flush()

        message = "Приемка завершена"
        if supply_id:
            message += ". Приемка создана"
        if enter_id:
            message += ". Оприходование создано"
        return {"supply_id": supply_id, "enter_id": enter_id, "message": message}

    async def cancel(self, session_id: int) -> ReceivingSession:
        session = await self.get_session(session_id)
        if session.status == ReceivingStatus.active:
            session.status = ReceivingStatus.cancelled
            await log_action(self.db, "receiving_cancelled", "receiving_session", session.id)
            await self.db.flush()
        return session
