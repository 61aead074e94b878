# warehouse_hub/services/stock_merge.py
"""
Stock / barcode merge.

Stock report rows identify the assortment in several ways (href, barcodes,
article, code). Every row is indexed under every key it carries and the
maximum quantity per key is kept. Quantities are never summed: the same
assortment legitimately shows up more than once in a report.
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

_ENTITY_ID_RE = re.compile(
    r"/entity/(?:product|variant|bundle|service|consignment|productFolder|productfolder)/([0-9a-f\-]{20,})",
    re.IGNORECASE,
)

_BARCODE_KEYS = ("ean13", "ean8", "code128", "gtin", "upc")


@dataclass(frozen=True)
class StockRecord:
    product_id: Optional[str]
    barcodes: tuple = ()
    article: Optional[str] = None
    sku: Optional[str] = None
    quantity: float = 0.0


def extract_entity_id(href: Any) -> Optional[str]:
    """UUID from a `/entity/<type>/<uuid>` href, None otherwise."""
    if not href:
        return None
    m = _ENTITY_ID_RE.search(str(href))
    return m.group(1) if m else None


def _barcode_values(items: Any) -> List[str]:
    out: List[str] = []
    if not isinstance(items, (list, tuple)):
        return out
    for b in items:
        if isinstance(b, Mapping):
            for k in _BARCODE_KEYS:
                if b.get(k):
                    out.append(str(b[k]))
        elif b:
            out.append(str(b))
    return out


def _clean(v: Any) -> Optional[str]:
    s = str(v).strip() if v is not None else ""
    return s or None


def _quantity(raw: Mapping[str, Any]) -> float:
    for k in ("stock", "quantity", "available"):
        v = raw.get(k)
        if v is not None:
            try:
                return float(v)
            except (TypeError, ValueError):
                return 0.0
    return 0.0


def normalize_stock_row(raw: Mapping[str, Any]) -> StockRecord:
    """Adapter for `report/stock/all` rows (and the normalized bystore fallback)."""
    meta = raw.get("meta") or {}
    assortment = raw.get("assortment") or {}
    href = (
        meta.get("href")
        or (assortment.get("meta") or {}).get("href")
        or assortment.get("href")
        or meta.get("uuidHref")
    )

    barcodes: List[str] = []
    if raw.get("barcode"):
        barcodes.append(str(raw["barcode"]))
    barcodes.extend(_barcode_values(raw.get("barcodes")))
    barcodes.extend(_barcode_values(assortment.get("barcodes")))
    barcodes = [b.strip() for b in barcodes if b and b.strip()]

    # code is the MoySklad name for what the warehouse calls SKU
    return StockRecord(
        product_id=extract_entity_id(href),
        barcodes=tuple(dict.fromkeys(barcodes)),
        article=_clean(raw.get("article")),
        sku=_clean(raw.get("code")) or _clean(raw.get("sku")),
        quantity=_quantity(raw),
    )


def _put_max(target: Dict[str, float], key: Optional[str], qty: float) -> None:
    if not key:
        return
    k = str(key).strip()
    if not k:
        return
    if qty > target.get(k, 0.0):
        target[k] = qty


@dataclass
class StockIndex:
    by_id: Dict[str, float] = field(default_factory=dict)
    by_barcode: Dict[str, float] = field(default_factory=dict)
    by_article: Dict[str, float] = field(default_factory=dict)

    def add(self, rec: StockRecord) -> None:
        _put_max(self.by_id, rec.product_id, rec.quantity)
        for bc in rec.barcodes:
            _put_max(self.by_barcode, bc, rec.quantity)
        _put_max(self.by_article, rec.article, rec.quantity)
        _put_max(self.by_article, rec.sku, rec.quantity)

    def resolve(
        self,
        product_id: Optional[str],
        barcodes: Sequence[str] = (),
        article: Optional[str] = None,
        sku: Optional[str] = None,
    ) -> float:
        """id, then each barcode in order, then article, then SKU; first non-zero wins."""
        if product_id:
            qty = self.by_id.get(product_id, 0.0)
            if qty:
                return qty
        for bc in barcodes:
            qty = self.by_barcode.get(str(bc).strip(), 0.0)
            if qty:
                return qty
        for key in (article, sku):
            k = (key or "").strip()
            if k:
                qty = self.by_article.get(k, 0.0)
                if qty:
                    return qty
        return 0.0


def merge_stock(rows: Iterable[Mapping[str, Any]]) -> StockIndex:
    index = StockIndex()
    for raw in rows:
        if isinstance(raw, StockRecord):
            index.add(raw)
        elif isinstance(raw, Mapping):
            index.add(normalize_stock_row(raw))
    return index
