# warehouse_hub/services/address.py
"""
Cell address parsing.

Location labels are free text typed by warehouse staff, e.g.
"Стеллаж 12, полка 3, ячейка A" or "Стелаж.5 полка 2 яч. b". Each component
(rack / shelf / cell) is extracted independently; a missing component stays
None and is never replaced by a default.
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Optional

# "стеллаж" and the common single-л misspelling "стелаж"
_RACK_RE = re.compile(r"стел+аж\.?\s*(\d+)", re.IGNORECASE)
_SHELF_RE = re.compile(r"полк(?:а|и|ы|\.?)\s*(\d+)", re.IGNORECASE)
_CELL_RE = re.compile(r"яч(?:ейк\w*|\.?)\s*([A-Za-zА-Яа-яЁё0-9]+)", re.IGNORECASE)

# Slot names coming from MoySklad
_SLOT_RACK_RE = re.compile(r"стел(?:лаж|аж)\.?\s*(\d+)", re.IGNORECASE)
_SLOT_SHELF_RE = re.compile(r"полк[аиы]?\s*(\d+)", re.IGNORECASE)
_SLOT_CELL_RE = re.compile(r"ячейк[аиы]?\s*([A-Za-zА-Яа-яЁё0-9]+)", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedAddress:
    rack: Optional[int] = None
    shelf: Optional[int] = None
    cell: Optional[str] = None

    @property
    def has_rack(self) -> bool:
        return self.rack is not None

    @property
    def is_complete(self) -> bool:
        return self.rack is not None and self.shelf is not None and self.cell is not None


EMPTY_ADDRESS = ParsedAddress()


def parse_cell_address(raw: Optional[str]) -> ParsedAddress:
    """Parse a location label into rack/shelf/cell. Never raises."""
    if raw is None:
        return EMPTY_ADDRESS
    s = str(raw).strip()
    if not s:
        return EMPTY_ADDRESS

    rack_m = _RACK_RE.search(s)
    shelf_m = _SHELF_RE.search(s)
    cell_m = _CELL_RE.search(s)

    return ParsedAddress(
        rack=int(rack_m.group(1)) if rack_m else None,
        shelf=int(shelf_m.group(1)) if shelf_m else None,
        cell=cell_m.group(1).strip().upper() if cell_m else None,
    )


def normalize_slot_name(raw: Optional[str]) -> Optional[str]:
    """
    Canonical label for a MoySklad slot name.

    "Стелаж.1, полка 1, ячейка A" -> "Стеллаж 1 полка 1 ячейка A".
    Names that do not contain all three parts are returned with whitespace
    collapsed; empty names give None.
    """
    name = str(raw or "").strip()
    if not name:
        return None

    rack_m = _SLOT_RACK_RE.search(name)
    shelf_m = _SLOT_SHELF_RE.search(name)
    cell_m = _SLOT_CELL_RE.search(name)

    if rack_m and shelf_m and cell_m:
        return f"Стеллаж {int(rack_m.group(1))} полка {int(shelf_m.group(1))} ячейка {cell_m.group(1).strip()}"

    return re.sub(r"\s+", " ", name)
