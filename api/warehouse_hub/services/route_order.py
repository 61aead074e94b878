# warehouse_hub/services/route_order.py
"""
Walking order of the racks on the warehouse floor.

The pickers walk a fixed "snake" through the racks; a rack's rank is its
position in that walk. Racks that are not part of the walk come after all
known racks (ordered by number), lines without a rack come last.
"""
from __future__ import annotations
import math
from typing import Dict, Iterable, Optional, Tuple

from warehouse_hub.services.address import ParsedAddress

RACK_WALK_ORDER: Tuple[int, ...] = (
    41, 42, 37, 38, 39, 40, 52, 51, 50, 49,
    32, 36, 31, 35, 30, 34, 29, 33, 28,
    23, 18, 19, 24, 20, 25, 21, 26, 22, 27,
    48, 47, 46,
    12, 17, 11, 16, 10, 15, 9, 14, 8, 13,
    1, 2, 3, 4, 5, 6, 7, 45, 44, 43,
)

UNKNOWN_RACK_OFFSET = 1000
MISSING_SHELF = 9999

RouteKey = Tuple[float, int, str]


class RouteOrderIndex:
    """rack number -> rank in the walk."""

    def __init__(self, order: Iterable[int] = RACK_WALK_ORDER):
        self._rank: Dict[int, int] = {}
        for pos, rack in enumerate(order):
            if rack in self._rank:
                raise ValueError(f"Rack {rack} appears twice in the route order")
            self._rank[rack] = pos

    def __len__(self) -> int:
        return len(self._rank)

    def __contains__(self, rack: object) -> bool:
        return rack in self._rank

    def rank(self, rack: Optional[int]) -> float:
        if rack is None:
            return math.inf
        pos = self._rank.get(rack)
        if pos is None:
            return UNKNOWN_RACK_OFFSET + rack
        return pos

    def sort_key(self, address: ParsedAddress) -> RouteKey:
        """Rack rank, then shelf (missing last), then cell (case-insensitive)."""
        shelf = address.shelf if address.shelf is not None else MISSING_SHELF
        cell = (address.cell or "").casefold()
        return (self.rank(address.rack), shelf, cell)


DEFAULT_ROUTE_ORDER = RouteOrderIndex()
