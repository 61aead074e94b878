# -*- coding: utf-8 -*-
"""
Spreadsheet uploads.

Two kinds of XLSX files reach the API:

1. Packing task lists (marketplace exports, hand-made lists). Column names
   vary; see the _HDR_* alias lists. Quantity defaults to 1.
2. The MoySklad UI report "Остатки по ячейкам" (stock by cells). The header
   row is preceded by a title block, so it is searched for in the first 50
   rows: it is the row mentioning "код", "ячейка" and "доступ".
"""
from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pandas as pd

logger = logging.getLogger(__name__)

_HDR_BARCODE = ["Barcode", "barcode", "Баркод", "ШтрихКод", "штрихкод", "Штрих-код", "Штрихкод"]
_HDR_SKU = ["SKU", "sku", "Артикул", "артикул", "Article", "article", "Код"]
_HDR_NAME = ["Name", "name", "Наименование", "наименование", "Товар"]
_HDR_QTY = ["Quantity", "quantity", "Количество", "количество", "Qty", "Кол-во"]

HEADER_SEARCH_ROWS = 50


class ReportFormatError(ValueError):
    pass


@dataclass(frozen=True)
class TaskRow:
    row: int
    barcode: str
    sku: str
    name: str
    quantity: float


def _norm_hdr_name(h: Any) -> str:
    s = str(h or "").strip().strip('"').strip("'").lower()
    return re.sub(r"\s+", "", s)


def _cell_str(v: Any) -> str:
    if v is None or (isinstance(v, float) and pd.isna(v)):
        return ""
    s = str(v).strip()
    # numeric barcodes read back as "4600000000000.0"
    if re.fullmatch(r"\d+\.0+", s):
        s = s.split(".", 1)[0]
    return "" if s.lower() == "nan" else s


def _to_number(v: Any, default: float = 0.0) -> float:
    s = _cell_str(v).replace(",", ".").replace("\xa0", "").replace(" ", "")
    if not s:
        return default
    try:
        return float(s)
    except ValueError:
        return default


def _read_frame(data: bytes, header: Optional[int] = 0) -> pd.DataFrame:
    try:
        return pd.read_excel(io.BytesIO(data), sheet_name=0, header=header, dtype=object)
    except Exception as e:
        raise ReportFormatError(f"Cannot read spreadsheet: {e}") from e


def _pick(row: Dict[str, Any], idx: Dict[str, str], candidates: List[str]) -> str:
    for c in candidates:
        col = idx.get(_norm_hdr_name(c))
        if col is not None:
            v = _cell_str(row.get(col))
            if v:
                return v
    return ""


def read_task_rows(data: bytes) -> List[TaskRow]:
    """Rows of a packing task upload; rows without any identifier or with qty <= 0 are skipped."""
    df = _read_frame(data)
    if df.empty:
        raise ReportFormatError("Файл пустой")

    idx = {_norm_hdr_name(c): c for c in df.columns}
    out: List[TaskRow] = []
    for n, rec in enumerate(df.to_dict(orient="records")):
        barcode = _pick(rec, idx, _HDR_BARCODE)
        sku = _pick(rec, idx, _HDR_SKU)
        name = _pick(rec, idx, _HDR_NAME)
        qty_raw = _pick(rec, idx, _HDR_QTY)
        quantity = _to_number(qty_raw, default=1.0) if qty_raw else 1.0

        if not barcode and not sku and not name:
            continue
        if quantity <= 0:
            continue
        # +2: 1-based and the header line
        out.append(TaskRow(row=n + 2, barcode=barcode, sku=sku, name=name, quantity=quantity))

    logger.info(f"Task upload: {len(out)} usable rows of {len(df)}")
    return out


def read_location_report(data: bytes) -> List[Dict[str, Any]]:
    """Rows of the "stock by cells" report as dicts: code, article, cell, available, name."""
    df = _read_frame(data, header=None)
    rows = [[_cell_str(v) for v in r] for r in df.itertuples(index=False, name=None)]

    header_idx = -1
    for i, r in enumerate(rows[:HEADER_SEARCH_ROWS]):
        joined = " | ".join(v.lower() for v in r)
        if "код" in joined and "ячейка" in joined and "доступ" in joined:
            header_idx = i
            break
    if header_idx == -1:
        raise ReportFormatError('Header row not found; expected the "Остатки по ячейкам" report')

    header = [v.lower() for v in rows[header_idx]]

    def col(pred) -> int:
        return next((i for i, h in enumerate(header) if pred(h)), -1)

    cols = {
        "code": col(lambda h: h == "код") if "код" in header else col(lambda h: "код" in h),
        "article": col(lambda h: "артикул" in h),
        "cell": col(lambda h: "ячейка" in h),
        "available": col(lambda h: "доступ" in h),
        "name": col(lambda h: "наименование" in h),
    }
    if cols["code"] == -1 and cols["article"] == -1:
        raise ReportFormatError('Report has neither "Код" nor "Артикул" column')
    if cols["cell"] == -1:
        raise ReportFormatError('Report has no "Ячейка" column')

    out: List[Dict[str, Any]] = []
    for r in rows[header_idx + 1:]:
        def get(key: str) -> str:
            j = cols[key]
            return r[j] if 0 <= j < len(r) else ""

        out.append({
            "code": get("code"),
            "article": get("article"),
            "cell": get("cell"),
            "available": _to_number(get("available")),
            "name": get("name"),
        })
    logger.info(f"Location report: header at row {header_idx + 1}, {len(out)} data rows")
    return out
