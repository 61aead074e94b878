# warehouse_hub/services/identifiers.py
"""
Product identifiers: barcodes, SKU (MoySklad `code`) and article.

Handles:
- Barcode classification (EAN-13, EAN-8, Code 128)
- Barcode extraction from MoySklad product payloads, pack barcodes included
  (marketplace packs such as "Упаковка (ШК) Ozon" carry their own codes)
- Product lookup for scanners and spreadsheet uploads
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional

from sqlalchemy import select, or_, func
from sqlalchemy.ext.asyncio import AsyncSession

from warehouse_hub.db_models import Product, ProductBarcode, BarcodeType


@dataclass(frozen=True)
class BarcodeInfo:
    barcode: str
    barcode_type: BarcodeType
    pack_name: Optional[str] = None


def classify_barcode(code: str) -> BarcodeType:
    """OZN-prefixed marketplace codes and anything non-EAN are Code 128."""
    code = (code or "").strip()
    if code.upper().startswith("OZN"):
        return BarcodeType.CODE128
    if re.fullmatch(r"\d{13}", code):
        return BarcodeType.EAN13
    if re.fullmatch(r"\d{8}", code):
        return BarcodeType.EAN8
    return BarcodeType.CODE128


def _packs(payload: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    packs = payload.get("packs")
    if isinstance(packs, Mapping) and isinstance(packs.get("rows"), list):
        return packs["rows"]
    if isinstance(packs, list):
        return packs
    if isinstance(payload.get("pack"), Mapping):
        return [payload["pack"]]
    return []


def extract_barcodes(payload: Mapping[str, Any]) -> List[BarcodeInfo]:
    """All distinct barcodes of a product/variant, product codes first, then packs."""
    out: List[BarcodeInfo] = []
    seen = set()

    def push(value: Any, barcode_type: Optional[BarcodeType] = None, pack_name: Optional[str] = None) -> None:
        s = str(value or "").strip()
        if not s or s in seen:
            return
        seen.add(s)
        out.append(BarcodeInfo(s, barcode_type or classify_barcode(s), pack_name))

    def push_list(items: Any, pack_name: Optional[str] = None) -> None:
        if not isinstance(items, list):
            return
        for b in items:
            if isinstance(b, Mapping):
                if b.get("ean13"):
                    push(b["ean13"], BarcodeType.EAN13, pack_name)
                if b.get("ean8"):
                    push(b["ean8"], BarcodeType.EAN8, pack_name)
                if b.get("code128"):
                    push(b["code128"], BarcodeType.CODE128, pack_name)
                if b.get("gtin"):
                    push(b["gtin"], None, pack_name)
            else:
                push(b, None, pack_name)

    push_list(payload.get("barcodes"))
    for pack in _packs(payload):
        pack_name = pack.get("name") or None
        if pack.get("barcode"):
            push(pack["barcode"], None, pack_name)
        push_list(pack.get("barcodes"), pack_name)
    return out


class ProductIdentifierService:
    """Lookup of products by any of their identifiers."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Lookup
    # =========================================================================

    async def find_product_by_barcode(self, code: str) -> Optional[Product]:
        """
        Main lookup for scanner operations: primary barcode or any
        product/pack barcode.
        """
        code = (code or "").strip()
        if not code:
            return None

        stmt = select(Product).where(Product.barcode == code).limit(1)
        product = (await self.db.execute(stmt)).scalar_one_or_none()
        if product is not None:
            return product

        stmt = (
            select(Product)
            .join(ProductBarcode, ProductBarcode.product_id == Product.id)
            .where(ProductBarcode.barcode == code)
            .limit(1)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def find_product_by_code(self, code: str) -> Optional[Product]:
        """SKU or article."""
        code = (code or "").strip()
        if not code:
            return None
        stmt = (
            select(Product)
            .where(or_(Product.sku == code, Product.article == code))
            .order_by(Product.name)
            .limit(1)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def find_product_by_name(self, name: str) -> Optional[Product]:
        name = (name or "").strip().lower()
        if not name:
            return None
        stmt = (
            select(Product)
            .where(func.lower(Product.name).like(f"%{name}%"))
            .order_by(Product.name)
            .limit(1)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def find_product(
        self,
        barcode: Optional[str] = None,
        code: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Optional[Product]:
        """Barcode first, then SKU/article, then a name substring."""
        product = None
        if barcode:
            product = await self.find_product_by_barcode(barcode)
        if product is None and code:
            product = await self.find_product_by_code(code)
        if product is None and name:
            product = await self.find_product_by_name(name)
        return product

    async def get_all_barcodes(self, product_id: str) -> List[str]:
        stmt = (
            select(ProductBarcode.barcode)
            .where(ProductBarcode.product_id == product_id)
            .order_by(ProductBarcode.id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())

    # =========================================================================
    # Write
    # =========================================================================

    async def replace_barcodes(self, product: Product, infos: Iterable[BarcodeInfo]) -> None:
        """
        Make the product's barcode rows equal to `infos`.

        Existing rows are updated in place (a flush inserts before it
        deletes, see uq_product_barcodes). `product.barcodes` must already
        be loaded.
        """
        wanted = {info.barcode: info for info in infos}
        for row in list(product.barcodes):
            info = wanted.pop(row.barcode, None)
            if info is None:
                product.barcodes.remove(row)
            else:
                row.barcode_type = info.barcode_type
                row.pack_name = info.pack_name
        for info in wanted.values():
            product.barcodes.append(ProductBarcode(
                barcode=info.barcode,
                barcode_type=info.barcode_type,
                pack_name=info.pack_name,
            ))
