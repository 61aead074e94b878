# warehouse_hub/services/catalog_sync.py
"""
Catalog sync from MoySklad.

One pass:
  1. products + variants and the stock report (both required, otherwise the
     pass is aborted before anything is written)
  2. stock merge and product/barcode upsert
  3. slot locations (best-effort, previous locations survive failures)
  4. purchase orders with their positions
  5. sync_status row and journal entry
"""
from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from starlette.concurrency import run_in_threadpool

from warehouse_hub.db_models import Product, PurchaseOrder, PurchaseOrderItem, SyncState, SyncStatus
from warehouse_hub.services.errors import UpstreamUnavailableError
from warehouse_hub.services.identifiers import ProductIdentifierService, extract_barcodes
from warehouse_hub.services.journal import log_action
from warehouse_hub.services.slots import SlotReconciliationService
from warehouse_hub.services.stock_merge import merge_stock
from warehouse_hub.settings import settings

logger = logging.getLogger(__name__)


# ============================================================================
# Payload mapping
# ============================================================================

def _image_url(payload: Mapping[str, Any]) -> Optional[str]:
    image = payload.get("image") or {}
    meta = image.get("meta") or {}
    miniature = image.get("miniature") or {}
    url = meta.get("downloadHref") or meta.get("href") or miniature.get("downloadHref") or miniature.get("href")
    if url:
        return url

    rows = (payload.get("images") or {}).get("rows") or []
    if rows:
        img = rows[0]
        for part in ("miniature", "tiny", "meta"):
            blk = img.get(part) or {}
            url = blk.get("downloadHref") or (blk.get("href") if part != "meta" else None)
            if url:
                return url

    base = payload.get("product") or {}
    if base:
        base_meta = (base.get("image") or {}).get("meta") or {}
        return base_meta.get("downloadHref") or base_meta.get("href")
    return None


def product_fields(payload: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """Column values for a product or variant payload; variants fall back to their product."""
    product_id = str(payload.get("id") or "").strip()
    if not product_id:
        return None
    base = payload.get("product") or {}
    prices = payload.get("salePrices") or base.get("salePrices") or []
    price_value = (prices[0] or {}).get("value") if prices else 0
    tracking = payload.get("trackingType")

    return {
        "id": product_id,
        "name": payload.get("name") or base.get("name") or "",
        "article": (payload.get("article") or base.get("article") or "").strip() or None,
        "sku": (payload.get("code") or base.get("code") or "").strip() or None,
        "price": float(price_value or 0) / 100,
        "image_url": _image_url(payload),
        "meta_href": (payload.get("meta") or {}).get("href") or (base.get("meta") or {}).get("href"),
        "requires_marking": bool(tracking) and tracking != "NOT_TRACKED",
    }


def _href_id(href: Optional[str]) -> Optional[str]:
    s = (href or "").rstrip("/")
    return s.rsplit("/", 1)[-1] if s else None


def _positions_size(order: Mapping[str, Any]) -> int:
    return ((order.get("positions") or {}).get("meta") or {}).get("size") or 0


# ============================================================================
# Service
# ============================================================================

class CatalogSyncService:
    def __init__(self, db: AsyncSession, client, slot_service: Optional[SlotReconciliationService] = None):
        self.db = db
        self.client = client
        self.slot_service = slot_service
        self.identifiers = ProductIdentifierService(db)

    # =========================================================================
    # Stock + products
    # =========================================================================

    async def _load_products(self, ids: Sequence[str]) -> Dict[str, Product]:
        found: Dict[str, Product] = {}
        for i in range(0, len(ids), 500):
            stmt = (
                select(Product)
                .options(selectinload(Product.barcodes))
                .where(Product.id.in_(ids[i:i + 500]))
            )
            result = await self.db.execute(stmt)
            for p in result.scalars():
                found[p.id] = p
        return found

    async def merge_and_persist_stock(
        self,
        raw_products: Iterable[Mapping[str, Any]],
        raw_stock_rows: Iterable[Mapping[str, Any]],
    ) -> Dict[str, float]:
        """
        Upsert products with their barcodes and merged stock.

        Stock resolution per product: assortment id, then any of its
        barcodes (pack barcodes included), then article, then SKU.
        Returns product id -> persisted stock.
        """
        index = merge_stock(raw_stock_rows)
        payloads = [p for p in raw_products if isinstance(p, Mapping)]
        ids = list(dict.fromkeys(str(p.get("id")) for p in payloads if p.get("id")))
        existing = await self._load_products(ids)

        persisted: Dict[str, float] = {}
        for payload in payloads:
            fields = product_fields(payload)
            if fields is None:
                continue
            infos = extract_barcodes(payload)
            barcodes = [i.barcode for i in infos]
            stock = index.resolve(fields["id"], barcodes, fields["article"], fields["sku"])

            product = existing.get(fields["id"])
            if product is None:
                product = Product(id=fields["id"])
                self.db.add(product)
                existing[product.id] = product
            for key, value in fields.items():
                if key != "id":
                    setattr(product, key, value)
            product.barcode = barcodes[0] if barcodes else None
            product.stock = stock
            await self.identifiers.replace_barcodes(product, infos)
            persisted[product.id] = stock

        await self.db.flush()
        logger.info(
            f"Stock merge: {len(persisted)} products, {sum(1 for v in persisted.values() if v > 0)} in stock "
            f"({len(index.by_id)} ids / {len(index.by_barcode)} barcodes / {len(index.by_article)} codes in report)"
        )
        return persisted

    # =========================================================================
    # Purchase orders
    # =========================================================================

    async def sync_purchase_orders(self, orders: Sequence[Mapping[str, Any]]) -> int:
        """Upsert orders with their positions; every positions page is fetched before anything is written."""
        orders = [o for o in orders if o.get("id")]
        positions: Dict[str, List[Mapping[str, Any]]] = {}
        for raw in orders:
            if _positions_size(raw) > 0:
                order_id = str(raw["id"])
                positions[order_id] = await run_in_threadpool(self.client.get_purchase_order_positions, order_id)

        known = set((await self.db.execute(select(Product.id))).scalars())
        stmt = (
            select(PurchaseOrder)
            .options(selectinload(PurchaseOrder.items))
            .where(PurchaseOrder.id.in_([str(o["id"]) for o in orders]))
        )
        existing = {o.id: o for o in (await self.db.execute(stmt)).scalars()}

        for raw in orders:
            order_id = str(raw["id"])
            order = existing.get(order_id)
            if order is None:
                order = PurchaseOrder(id=order_id, items=[])
                self.db.add(order)

            order.name = raw.get("name") or ""
            order.moment = raw.get("moment") or None
            order.supplier_name = (raw.get("agent") or {}).get("name") or None
            order.total_items = _positions_size(raw)
            order.meta_href = (raw.get("meta") or {}).get("href")
            order.agent_meta = (raw.get("agent") or {}).get("meta")
            order.organization_meta = (raw.get("organization") or {}).get("meta")
            order.store_meta = (raw.get("store") or {}).get("meta")

            if order_id in positions:
                order.items.clear()
                for pos in positions[order_id]:
                    product_id = _href_id(((pos.get("assortment") or {}).get("meta") or {}).get("href"))
                    if product_id in known:
                        order.items.append(PurchaseOrderItem(
                            product_id=product_id,
                            ordered_qty=float(pos.get("quantity") or 0),
                        ))

        await self.db.flush()
        return len(orders)

    # =========================================================================
    # Status
    # =========================================================================

    async def get_status(self) -> SyncStatus:
        status = await self.db.get(SyncStatus, 1)
        if status is None:
            status = SyncStatus(id=1, status=SyncState.never, products_count=0, orders_count=0)
            self.db.add(status)
            await self.db.flush()
        return status

    async def _fail(self, message: str) -> None:
        # drop whatever the pass left half-written, then record the failure in its own commit
        await self.db.rollback()
        status = await self.get_status()
        status.status = SyncState.error
        status.message = message
        await log_action(self.db, "sync_failed", details={"error": message})
        await self.db.commit()

    # =========================================================================
    # Full pass
    # =========================================================================

    async def run_full_sync(self) -> Dict[str, Any]:
        status = await self.get_status()
        status.status = SyncState.syncing
        status.message = None
        await log_action(self.db, "sync_started")
        await self.db.commit()

        try:
            products = await run_in_threadpool(self.client.get_all_products)
        except Exception as e:
            logger.exception("Product fetch failed")
            await self._fail(f"Products unavailable: {e}")
            raise UpstreamUnavailableError(f"MoySklad products unavailable: {e}") from e
        if not products:
            await self._fail("MoySklad returned no products")
            raise UpstreamUnavailableError("MoySklad returned no products")

        try:
            stock_rows = await run_in_threadpool(self.client.get_stock)
        except Exception as e:
            logger.exception("Stock report failed")
            await self._fail(f"Stock report unavailable: {e}")
            raise UpstreamUnavailableError(f"MoySklad stock report unavailable: {e}") from e
        if not stock_rows:
            await self._fail("MoySklad stock report is empty")
            raise UpstreamUnavailableError("MoySklad stock report is empty")

        try:
            return await self._apply(status, products, stock_rows)
        except Exception as e:
            logger.exception("Sync pass failed")
            await self._fail(f"Sync failed: {e}")
            raise

    async def _apply(
        self,
        status: SyncStatus,
        products: Sequence[Mapping[str, Any]],
        stock_rows: Sequence[Mapping[str, Any]],
    ) -> Dict[str, Any]:
        persisted = await self.merge_and_persist_stock(products, stock_rows)

        located = 0
        if self.slot_service is not None:
            located = await self.slot_service.reconcile_locations(list(persisted))

        orders_count = 0
        try:
            orders = await run_in_threadpool(self.client.get_purchase_orders)
            orders_count = await self.sync_purchase_orders(orders)
        except Exception as e:
            logger.warning(f"Purchase orders sync skipped: {e}")

        with_images = sum(
            1 for p in (await self._load_products(list(persisted))).values() if p.image_url
        )
        status.status = SyncState.success
        status.last_sync = datetime.now(timezone.utc)
        status.products_count = len(persisted)
        status.orders_count = orders_count
        status.message = (
            f"Синхронизировано: {len(persisted)} товаров, {orders_count} заказов, {with_images} с фото"
        )
        summary = {
            "products": len(persisted),
            "in_stock": sum(1 for v in persisted.values() if v > 0),
            "located": located,
            "orders": orders_count,
            "with_images": with_images,
        }
        await log_action(self.db, "sync_completed", "products", details=summary)
        await self.db.flush()
        return {**summary, "message": status.message}


def build_slot_service(db: AsyncSession, client, cache) -> SlotReconciliationService:
    """Slot service configured for full-catalog passes."""
    return SlotReconciliationService(db, client, cache, chunk_size=settings.MOYSKLAD_SYNC_CHUNK_SIZE)
