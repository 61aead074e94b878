# warehouse_hub/routers/products.py
"""
Products Router - catalog, MoySklad sync and storage locations.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile
from sqlalchemy import select, or_, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from starlette.concurrency import run_in_threadpool

from warehouse_hub.adapters.moysklad import MoySkladClient
from warehouse_hub.adapters.xlsx_reports import ReportFormatError, read_location_report
from warehouse_hub.database import get_session
from warehouse_hub.db_models import AppSetting, Product, ProductLocation
from warehouse_hub.deps import get_client, get_slot_cache, get_slot_service, http_errors
from warehouse_hub.models import ProductOut, ReconcileIn, StoreSettingIn
from warehouse_hub.services.catalog_sync import CatalogSyncService, build_slot_service
from warehouse_hub.services.errors import UpstreamUnavailableError
from warehouse_hub.services.identifiers import ProductIdentifierService
from warehouse_hub.services.slots import STORE_SETTING_KEY, SlotDirectoryCache, SlotReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["Products"])


def _out(product: Product, cell_address: Optional[str]) -> ProductOut:
    return ProductOut(
        id=product.id,
        name=product.name,
        article=product.article,
        sku=product.sku,
        barcode=product.barcode,
        price=product.price,
        stock=product.stock,
        image_url=product.image_url,
        requires_marking=product.requires_marking,
        cell_address=cell_address,
        barcodes=[b.barcode for b in product.barcodes],
    )


async def _load_out(db: AsyncSession, product_id: str) -> ProductOut:
    stmt = (
        select(Product, ProductLocation.cell_address)
        .outerjoin(ProductLocation, ProductLocation.product_id == Product.id)
        .options(selectinload(Product.barcodes))
        .where(Product.id == product_id)
    )
    row = (await db.execute(stmt)).first()
    if row is None:
        raise HTTPException(404, detail="Product not found")
    return _out(row[0], row[1])


# ============================================================================
# Catalog
# ============================================================================

@router.get("", response_model=List[ProductOut])
async def list_products(
    search: Optional[str] = Query(None, description="Name, article, SKU or barcode"),
    in_stock: bool = Query(False),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_session),
):
    stmt = (
        select(Product, ProductLocation.cell_address)
        .outerjoin(ProductLocation, ProductLocation.product_id == Product.id)
        .options(selectinload(Product.barcodes))
    )
    if search and search.strip():
        q = search.strip()
        stmt = stmt.where(or_(
            func.lower(Product.name).like(f"%{q.lower()}%"),
            Product.article == q,
            Product.sku == q,
            Product.barcode == q,
        ))
    if in_stock:
        stmt = stmt.where(Product.stock > 0)
    stmt = stmt.order_by(Product.name).limit(limit).offset(offset)
    result = await db.execute(stmt)
    return [_out(p, cell) for p, cell in result.all()]


@router.get("/barcode/{barcode}", response_model=ProductOut)
async def get_by_barcode(barcode: str, db: AsyncSession = Depends(get_session)):
    """Any product or pack barcode."""
    product = await ProductIdentifierService(db).find_product_by_barcode(barcode)
    if product is None:
        raise HTTPException(404, detail="Product not found")
    return await _load_out(db, product.id)


@router.get("/article/{article}", response_model=ProductOut)
async def get_by_article(article: str, db: AsyncSession = Depends(get_session)):
    product = await ProductIdentifierService(db).find_product_by_code(article)
    if product is None:
        raise HTTPException(404, detail="Product not found")
    return await _load_out(db, product.id)


# ============================================================================
# Sync
# ============================================================================

@router.post("/sync")
async def sync_catalog(
    db: AsyncSession = Depends(get_session),
    client: Optional[MoySkladClient] = Depends(get_client),
    cache: SlotDirectoryCache = Depends(get_slot_cache),
):
    """
    Full MoySklad pass: products, stock, slot locations, purchase orders.

    502 when the product list or the stock report is unavailable; nothing is
    overwritten in that case.
    """
    with http_errors():
        if client is None:
            raise UpstreamUnavailableError("MoySklad is not configured")
        service = CatalogSyncService(db, client, build_slot_service(db, client, cache))
        return await service.run_full_sync()


@router.get("/sync/status")
async def sync_status(
    db: AsyncSession = Depends(get_session),
    client: Optional[MoySkladClient] = Depends(get_client),
):
    status = await CatalogSyncService(db, client).get_status()
    connection: Dict[str, Any] = {"connected": False, "error": "MoySklad is not configured"}
    if client is not None:
        connection = await run_in_threadpool(client.check_connection)
    return {
        "status": status.status.value,
        "last_sync": status.last_sync,
        "products_count": status.products_count,
        "orders_count": status.orders_count,
        "message": status.message,
        "moysklad": connection,
    }


# ============================================================================
# Locations
# ============================================================================

@router.post("/locations/upload")
async def upload_locations(
    file: UploadFile = File(...),
    slots: SlotReconciliationService = Depends(get_slot_service),
):
    """Apply the MoySklad "Остатки по ячейкам" XLSX report."""
    data = await file.read()
    if not data:
        raise HTTPException(400, detail="Файл не загружен")
    try:
        rows = await run_in_threadpool(read_location_report, data)
    except ReportFormatError as e:
        raise HTTPException(400, detail=str(e))
    result = await slots.apply_location_report(rows)
    logger.info(f"Location report {file.filename}: {result}")
    return {"success": True, "rows": len(rows), **result}


@router.post("/locations/reconcile")
async def reconcile_locations(
    body: ReconcileIn,
    slots: SlotReconciliationService = Depends(get_slot_service),
):
    """Refresh slot locations for the given products (best-effort)."""
    updated = await slots.reconcile_locations(body.product_ids, body.store_id)
    return {"success": True, "updated": updated}


# ============================================================================
# Store setting
# ============================================================================

@router.get("/settings/store")
async def get_store_setting(
    db: AsyncSession = Depends(get_session),
    client: Optional[MoySkladClient] = Depends(get_client),
):
    setting = await db.get(AppSetting, STORE_SETTING_KEY)
    return {
        "store_id": setting.value if setting else None,
        "store_name": client.store_name if client else None,
    }


@router.put("/settings/store")
async def put_store_setting(
    body: StoreSettingIn,
    db: AsyncSession = Depends(get_session),
    cache: SlotDirectoryCache = Depends(get_slot_cache),
):
    """Override the store used for slot lookups; an empty value falls back to the environment."""
    value = (body.store_id or "").strip() or None
    setting = await db.get(AppSetting, STORE_SETTING_KEY)
    if setting is None:
        db.add(AppSetting(key=STORE_SETTING_KEY, value=value))
    else:
        setting.value = value
    cache.invalidate()
    return {"success": True, "store_id": value}


@router.get("/{product_id}/image")
async def get_product_image(product_id: str, client: Optional[MoySkladClient] = Depends(get_client)):
    """First MoySklad picture of the product, downloaded with the service credentials."""
    with http_errors():
        if client is None:
            raise UpstreamUnavailableError("MoySklad is not configured")
        try:
            image = await run_in_threadpool(client.get_product_image, product_id)
        except Exception as e:
            logger.exception(f"Image download failed for {product_id}")
            raise UpstreamUnavailableError(f"MoySklad image unavailable: {e}") from e
    if image is None:
        raise HTTPException(404, detail="Image not found")
    content, media_type = image
    return Response(content=content, media_type=media_type, headers={"Cache-Control": "public, max-age=86400"})


@router.get("/{product_id}", response_model=ProductOut)
async def get_product(product_id: str, db: AsyncSession = Depends(get_session)):
    return await _load_out(db, product_id)
