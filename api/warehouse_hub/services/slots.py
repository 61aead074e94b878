# warehouse_hub/services/slots.py
"""
Slot reconciliation: choose one storage cell per product.

MoySklad reports stock per slot (`report/stock/byslot/current`), so a product
spread over several cells yields several candidates. The cell holding the
largest positive quantity wins. A pass that learns nothing about a product
never erases what we already knew about it.

The pure part (`reconcile`, `pick_best_cells`) has no I/O; the service wraps
it with the vendor calls and the `product_locations` upserts.
"""
from __future__ import annotations
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from warehouse_hub.db_models import AppSetting, Product, ProductLocation
from warehouse_hub.services.address import normalize_slot_name
from warehouse_hub.settings import settings

logger = logging.getLogger(__name__)

STORE_SETTING_KEY = "moysklad_store_id"


# ============================================================================
# Types
# ============================================================================

@dataclass(frozen=True)
class SlotCandidate:
    product_id: str
    slot_id: str
    quantity: float


@dataclass(frozen=True)
class ResolvedLocation:
    cell_address: Optional[str]
    slot_id: Optional[str] = None


@dataclass
class ReconciliationResult:
    locations: Dict[str, ResolvedLocation]
    updated: Set[str] = field(default_factory=set)
    dropped_non_positive: int = 0
    dropped_unknown_slot: int = 0


# ============================================================================
# Row adapter
# ============================================================================

def _last_segment(href: Any) -> str:
    s = str(href or "").strip().rstrip("/")
    return s.rsplit("/", 1)[-1] if s else ""


def _to_float(v: Any) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return 0.0


def _first_present(row: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for k in keys:
        v = row.get(k)
        if v is not None:
            return v
    return None


def normalize_slot_row(raw: Mapping[str, Any]) -> Optional[SlotCandidate]:
    """Accepts the id/quantity spellings seen in byslot reports; None if ids are missing."""
    if not isinstance(raw, Mapping):
        return None
    assortment = raw.get("assortment") or {}
    slot = raw.get("slot") or {}

    product_id = str(
        raw.get("assortmentId")
        or assortment.get("id")
        or _last_segment((assortment.get("meta") or {}).get("href"))
        or ""
    ).strip()
    slot_id = str(
        raw.get("slotId")
        or slot.get("id")
        or _last_segment((slot.get("meta") or {}).get("href"))
        or ""
    ).strip()
    if not product_id or not slot_id:
        return None

    qty = _to_float(_first_present(raw, ("stock", "quantity", "available")))
    return SlotCandidate(product_id=product_id, slot_id=slot_id, quantity=qty)


# ============================================================================
# Pure reconciliation
# ============================================================================

def reconcile(
    candidates: Iterable[SlotCandidate],
    prior: Mapping[str, ResolvedLocation],
    slot_directory: Mapping[str, str],
) -> ReconciliationResult:
    """
    Merge slot candidates into the prior location map.

    - candidates with quantity <= 0 are ignored
    - candidates whose slot is not in the directory are ignored before the max
      is taken, so the next best known slot can still win
    - maximum quantity wins, ties keep the first candidate seen
    - products without a surviving candidate keep their prior location
    """
    candidates = list(candidates)
    result = ReconciliationResult(locations=dict(prior))
    if not candidates:
        return result

    best: Dict[str, Tuple[SlotCandidate, str]] = {}
    for cand in candidates:
        if cand.quantity <= 0:
            result.dropped_non_positive += 1
            continue
        label = normalize_slot_name(slot_directory.get(cand.slot_id))
        if label is None:
            result.dropped_unknown_slot += 1
            continue
        cur = best.get(cand.product_id)
        if cur is None or cand.quantity > cur[0].quantity:
            best[cand.product_id] = (cand, label)

    for product_id, (cand, label) in best.items():
        result.locations[product_id] = ResolvedLocation(cell_address=label, slot_id=cand.slot_id)
        result.updated.add(product_id)
    return result


@dataclass(frozen=True)
class ReportCell:
    cell: str
    available: float


def pick_best_cells(rows: Iterable[Mapping[str, Any]]) -> Tuple[Dict[str, ReportCell], Dict[str, ReportCell]]:
    """Best cell per SKU code and per article from a "stock by cells" report (max available wins)."""
    by_sku: Dict[str, ReportCell] = {}
    by_article: Dict[str, ReportCell] = {}
    for row in rows:
        cell = str(row.get("cell") or "").strip()
        code = str(row.get("code") or "").strip()
        article = str(row.get("article") or "").strip()
        # separator rows repeat the header
        if not cell or cell.lower() == "ячейка":
            continue
        if not code and not article:
            continue
        rec = ReportCell(cell=cell, available=_to_float(row.get("available")))
        if code:
            prev = by_sku.get(code)
            if prev is None or rec.available > prev.available:
                by_sku[code] = rec
        if article:
            prev = by_article.get(article)
            if prev is None or rec.available > prev.available:
                by_article[article] = rec
    return by_sku, by_article


# ============================================================================
# Slot directory cache
# ============================================================================

class SlotDirectoryCache:
    """
    slot_id -> slot name per store, with a TTL.

    Owned by the application (one per process) and handed to services;
    `invalidate()` drops one store or everything.
    """

    def __init__(self, ttl_seconds: float = 600.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Dict[str, str]]] = {}

    def get(self, store_id: str) -> Optional[Dict[str, str]]:
        entry = self._entries.get(store_id)
        if entry is None:
            return None
        loaded_at, directory = entry
        if self._clock() - loaded_at >= self.ttl_seconds:
            del self._entries[store_id]
            return None
        return directory

    def put(self, store_id: str, directory: Mapping[str, str]) -> None:
        self._entries[store_id] = (self._clock(), dict(directory))

    def invalidate(self, store_id: Optional[str] = None) -> None:
        if store_id is None:
            self._entries.clear()
        else:
            self._entries.pop(store_id, None)


# ============================================================================
# Persistence helpers
# ============================================================================

async def load_locations(db: AsyncSession, product_ids: Sequence[str]) -> Dict[str, ResolvedLocation]:
    out: Dict[str, ResolvedLocation] = {}
    for chunk in _chunks(list(product_ids), 500):
        stmt = select(ProductLocation).where(ProductLocation.product_id.in_(chunk))
        result = await db.execute(stmt)
        for loc in result.scalars():
            out[loc.product_id] = ResolvedLocation(cell_address=loc.cell_address, slot_id=loc.slot_id)
    return out


async def upsert_location(db: AsyncSession, product_id: str, location: ResolvedLocation) -> None:
    loc = await db.get(ProductLocation, product_id)
    if loc is None:
        db.add(ProductLocation(
            product_id=product_id,
            cell_address=location.cell_address,
            slot_id=location.slot_id,
        ))
    else:
        loc.cell_address = location.cell_address
        loc.slot_id = location.slot_id


async def _existing_product_ids(db: AsyncSession, product_ids: Iterable[str]) -> Set[str]:
    found: Set[str] = set()
    for chunk in _chunks(list(product_ids), 500):
        result = await db.execute(select(Product.id).where(Product.id.in_(chunk)))
        found.update(result.scalars())
    return found


def _chunks(items: List[Any], size: int) -> Iterator[List[Any]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


# ============================================================================
# Service
# ============================================================================

class SlotReconciliationService:
    """Refreshes `product_locations` from MoySklad slot stock."""

    def __init__(
        self,
        db: AsyncSession,
        client=None,
        cache: Optional[SlotDirectoryCache] = None,
        chunk_size: Optional[int] = None,
    ):
        self.db = db
        self.client = client
        self.cache = cache if cache is not None else SlotDirectoryCache(settings.SLOT_CACHE_TTL_SECONDS)
        self.chunk_size = chunk_size or settings.MOYSKLAD_SLOT_CHUNK_SIZE

    async def resolve_store_id(self) -> Optional[str]:
        """app_settings override first, then MOYSKLAD_STORE_ID / MOYSKLAD_STORE_NAME."""
        setting = await self.db.get(AppSetting, STORE_SETTING_KEY)
        if setting and (setting.value or "").strip():
            return setting.value.strip()
        if self.client is None:
            return None
        return await run_in_threadpool(self.client.store_id)

    async def slot_directory(self, store_id: str) -> Dict[str, str]:
        directory = self.cache.get(store_id)
        if directory is None:
            directory = await run_in_threadpool(self.client.get_store_slot_names, store_id)
            self.cache.put(store_id, directory)
            logger.info(f"Loaded {len(directory)} slots for store {store_id}")
        return directory

    async def fetch_candidates(self, product_ids: Sequence[str], store_id: str) -> List[SlotCandidate]:
        """Sequential chunked fetch; a failing chunk is logged and skipped."""
        candidates: List[SlotCandidate] = []
        for n, chunk in enumerate(_chunks(list(product_ids), self.chunk_size)):
            try:
                rows = await run_in_threadpool(self.client.get_slot_stock, chunk, store_id)
            except Exception as e:
                logger.warning(f"Slot stock chunk {n} ({len(chunk)} products) failed: {e}")
                continue
            for raw in rows:
                cand = normalize_slot_row(raw)
                if cand is not None:
                    candidates.append(cand)
        return candidates

    async def reconcile_locations(self, product_ids: Iterable[str], store_id: Optional[str] = None) -> int:
        """
        Refresh locations for the given products.

        Returns the number of products whose location was freshly resolved.
        Never raises for upstream problems: locations are best-effort.
        """
        ids = list(dict.fromkeys(str(p).strip() for p in product_ids if p and str(p).strip()))
        if not ids:
            return 0
        if self.client is None:
            logger.warning("Slot reconciliation skipped: MoySklad client not configured")
            return 0

        try:
            sid = (store_id or "").strip() or await self.resolve_store_id()
        except Exception as e:
            logger.warning(f"Slot reconciliation skipped: cannot resolve store ({e})")
            return 0
        if not sid:
            logger.warning("Slot reconciliation skipped: store id not configured")
            return 0

        try:
            directory = await self.slot_directory(sid)
        except Exception as e:
            logger.warning(f"Slot reconciliation skipped: slot directory unavailable ({e})")
            return 0

        candidates = await self.fetch_candidates(ids, sid)
        if not candidates:
            logger.warning("byslot report returned no rows; keeping previous locations")
            return 0

        prior = await load_locations(self.db, ids)
        result = reconcile(candidates, prior, directory)
        known = await _existing_product_ids(self.db, result.updated)

        for product_id in sorted(result.updated & known):
            await upsert_location(self.db, product_id, result.locations[product_id])
        await self.db.flush()

        logger.info(
            f"Slot reconciliation: {len(candidates)} rows, {len(result.updated & known)} products located, "
            f"{result.dropped_non_positive} empty slots, {result.dropped_unknown_slot} unknown slots"
        )
        return len(result.updated & known)

    async def apply_location_report(self, rows: Iterable[Mapping[str, Any]]) -> Dict[str, int]:
        """
        Apply an uploaded "stock by cells" report.

        SKU (MoySklad `code`) matches first, article matches only touch
        products not already updated through their SKU.
        """
        by_sku, by_article = pick_best_cells(rows)
        touched: Set[str] = set()
        updated = 0

        for sku, rec in by_sku.items():
            result = await self.db.execute(select(Product.id).where(Product.sku == sku))
            for product_id in result.scalars():
                await upsert_location(self.db, product_id, ResolvedLocation(normalize_slot_name(rec.cell)))
                touched.add(product_id)
                updated += 1

        for article, rec in by_article.items():
            result = await self.db.execute(select(Product.id).where(Product.article == article))
            for product_id in result.scalars():
                if product_id in touched:
                    continue
                await upsert_location(self.db, product_id, ResolvedLocation(normalize_slot_name(rec.cell)))
                touched.add(product_id)
                updated += 1

        await self.db.flush()
        return {"updated": updated, "sku_mapped": len(by_sku), "article_mapped": len(by_article)}
