# warehouse_hub/services/route_sheet.py
"""
Route sheet for a packing task.

Task lines are split into three buckets:

- zoned        stock on hand, something left to collect, rack known;
               ordered along the walk and grouped by rack
- no_location  stock on hand, something left to collect, rack unknown
- no_stock     nothing on hand although the task wants it

Lines with stock whose quantity is already collected are only counted.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from warehouse_hub.db_models import Product, ProductLocation
from warehouse_hub.db_models_ext import PackingTask, PackingTaskItem
from warehouse_hub.services.address import ParsedAddress, parse_cell_address
from warehouse_hub.services.errors import NotFoundError
from warehouse_hub.services.route_order import DEFAULT_ROUTE_ORDER, RouteOrderIndex


@dataclass
class PickLine:
    item_id: int
    product_id: str
    name: str
    planned_qty: int
    scanned_qty: int
    stock: float
    barcode: Optional[str] = None
    article: Optional[str] = None
    cell_address: Optional[str] = None

    @property
    def address(self) -> ParsedAddress:
        return parse_cell_address(self.cell_address)

    @property
    def qty_to_collect(self) -> int:
        return max((self.planned_qty or 0) - (self.scanned_qty or 0), 0)

    @property
    def in_stock(self) -> bool:
        return (self.stock or 0) > 0

    @property
    def collectible(self) -> bool:
        return self.in_stock and self.qty_to_collect > 0

    def as_dict(self) -> dict:
        return {
            "id": self.item_id,
            "product_id": self.product_id,
            "name": self.name,
            "barcode": self.barcode,
            "article": self.article,
            "cell_address": self.cell_address,
            "rack": self.address.rack,
            "shelf": self.address.shelf,
            "cell": self.address.cell,
            "planned_qty": self.planned_qty,
            "scanned_qty": self.scanned_qty,
            "qty_to_collect": self.qty_to_collect,
            "stock": self.stock,
        }


@dataclass
class RouteZone:
    rack: int
    lines: List[PickLine] = field(default_factory=list)

    @property
    def qty_to_collect(self) -> int:
        return sum(line.qty_to_collect for line in self.lines)


@dataclass
class RouteSheet:
    zones: List[RouteZone] = field(default_factory=list)
    no_location: List[PickLine] = field(default_factory=list)
    no_stock: List[PickLine] = field(default_factory=list)
    completed_count: int = 0
    task_id: Optional[int] = None
    task_name: Optional[str] = None

    @property
    def total_to_collect(self) -> int:
        return sum(zone.qty_to_collect for zone in self.zones)

    @property
    def zoned_count(self) -> int:
        return sum(len(zone.lines) for zone in self.zones)


def build_route_sheet(lines: Sequence[PickLine], route_index: RouteOrderIndex = DEFAULT_ROUTE_ORDER) -> RouteSheet:
    """Pure: partition, order along the walk and group by rack."""
    sheet = RouteSheet()
    zoned: List[PickLine] = []

    for line in lines:
        if not line.in_stock:
            if line.planned_qty > 0:
                sheet.no_stock.append(line)
            continue
        if line.qty_to_collect <= 0:
            sheet.completed_count += 1
            continue
        if line.address.has_rack:
            zoned.append(line)
        else:
            sheet.no_location.append(line)

    # stable sort: equal keys keep task order
    zoned.sort(key=lambda ln: route_index.sort_key(ln.address))
    by_rack: Dict[int, RouteZone] = {}
    for line in zoned:
        zone = by_rack.get(line.address.rack)
        if zone is None:
            zone = by_rack[line.address.rack] = RouteZone(rack=line.address.rack)
            sheet.zones.append(zone)
        zone.lines.append(line)

    sheet.no_location.sort(key=lambda ln: (ln.name or "").casefold())
    return sheet


class RouteSheetService:
    """Loads task lines with stock and location and builds the sheet."""

    def __init__(self, db: AsyncSession, route_index: RouteOrderIndex = DEFAULT_ROUTE_ORDER):
        self.db = db
        self.route_index = route_index

    async def load_lines(self, task_id: int) -> List[PickLine]:
        stmt = (
            select(PackingTaskItem, Product, ProductLocation.cell_address)
            .join(Product, Product.id == PackingTaskItem.product_id)
            .outerjoin(ProductLocation, ProductLocation.product_id == Product.id)
            .where(PackingTaskItem.task_id == task_id)
            .order_by(PackingTaskItem.id)
        )
        result = await self.db.execute(stmt)
        return [
            PickLine(
                item_id=item.id,
                product_id=product.id,
                name=product.name,
                planned_qty=item.planned_qty,
                scanned_qty=item.scanned_qty,
                stock=product.stock or 0,
                barcode=product.barcode,
                article=product.article,
                cell_address=cell_address,
            )
            for item, product, cell_address in result.all()
        ]

    async def build(self, task_id: int) -> RouteSheet:
        task = await self.db.get(PackingTask, task_id)
        if task is None:
            raise NotFoundError(f"Packing task {task_id} not found")
        sheet = build_route_sheet(await self.load_lines(task_id), self.route_index)
        sheet.task_id = task.id
        sheet.task_name = task.name
        return sheet
