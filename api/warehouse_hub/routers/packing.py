# warehouse_hub/routers/packing.py
"""
Packing Router - packing tasks, boxes, marking codes and route sheets.
"""
from __future__ import annotations
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from warehouse_hub.adapters.moysklad import MoySkladClient
from warehouse_hub.adapters.xlsx_reports import ReportFormatError, read_task_rows
from warehouse_hub.database import get_session
from warehouse_hub.deps import get_client, get_slot_service, http_errors
from warehouse_hub.models import CompleteTaskIn, CreateTaskIn, PackingScanIn, TaskItemIn
from warehouse_hub.services.packing import PackingService
from warehouse_hub.services.route_sheet import RouteSheetService
from warehouse_hub.services.slots import SlotReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/packing", tags=["Packing"])


def get_packing_service(
    db: AsyncSession = Depends(get_session),
    client: Optional[MoySkladClient] = Depends(get_client),
    slots: SlotReconciliationService = Depends(get_slot_service),
) -> PackingService:
    return PackingService(db, client, slots)


# ============================================================================
# Tasks
# ============================================================================

@router.get("/tasks")
async def list_tasks(service: PackingService = Depends(get_packing_service)):
    return await service.list_tasks()


@router.get("/tasks/{task_id}")
async def get_task(task_id: int, service: PackingService = Depends(get_packing_service)):
    with http_errors():
        return await service.task_detail(task_id)


@router.post("/tasks/upload")
async def upload_task(
    file: UploadFile = File(...),
    service: PackingService = Depends(get_packing_service),
):
    """
    Create a task from an XLSX list (barcode / SKU / name / quantity).

    Unknown rows are returned in `not_found`, rows without stock in
    `skipped_no_stock`; quantities are capped at the stock on hand.
    """
    data = await file.read()
    if not data:
        raise HTTPException(400, detail="Файл не загружен")
    try:
        rows = await run_in_threadpool(read_task_rows, data)
    except ReportFormatError as e:
        raise HTTPException(400, detail=str(e))

    with http_errors():
        result = await service.create_from_rows(rows)
    return {
        "success": True,
        "task_id": result.task.id,
        "created": len(result.task.items),
        "total_quantity": result.task.total_items,
        "not_found": result.not_found,
        "skipped_no_stock": result.skipped_no_stock,
    }


@router.post("/tasks")
async def create_task(body: CreateTaskIn, service: PackingService = Depends(get_packing_service)):
    with http_errors():
        task = await service.create_manual([i.model_dump() for i in body.items], body.name)
    return {
        "success": True,
        "task_id": task.id,
        "items_count": len(task.items),
        "total_quantity": task.total_items,
    }


@router.post("/tasks/{task_id}/items")
async def add_task_item(task_id: int, body: TaskItemIn, service: PackingService = Depends(get_packing_service)):
    with http_errors():
        result = await service.add_item(task_id, body.product_id, body.quantity)
    return {"success": True, **result}


@router.post("/tasks/{task_id}/scan")
async def scan_item(task_id: int, body: PackingScanIn, service: PackingService = Depends(get_packing_service)):
    """Scan one unit; marked products need a Chestny Znak code when packed into a box."""
    with http_errors():
        result = await service.scan(task_id, body.barcode, body.box_id, body.marking_code)
    return {"success": True, **result}


# ============================================================================
# Boxes
# ============================================================================

@router.get("/tasks/{task_id}/boxes")
async def list_boxes(task_id: int, service: PackingService = Depends(get_packing_service)):
    with http_errors():
        return await service.list_boxes(task_id)


@router.post("/tasks/{task_id}/boxes")
async def create_box(task_id: int, service: PackingService = Depends(get_packing_service)):
    with http_errors():
        box = await service.create_box(task_id)
    return {
        "success": True,
        "box": {"id": box.id, "task_id": box.task_id, "number": box.number, "status": box.status.value},
    }


@router.post("/tasks/{task_id}/boxes/{box_id}/close")
async def close_box(task_id: int, box_id: int, service: PackingService = Depends(get_packing_service)):
    with http_errors():
        await service.close_box(task_id, box_id)
    return {"success": True}


# ============================================================================
# Route sheet / completion
# ============================================================================

@router.get("/tasks/{task_id}/route-sheet")
async def route_sheet(task_id: int, db: AsyncSession = Depends(get_session)):
    """Pick lines grouped by rack in walking order, plus lines without location or stock."""
    with http_errors():
        sheet = await RouteSheetService(db).build(task_id)
    return {
        "task": {"id": sheet.task_id, "name": sheet.task_name},
        "zones": [
            {
                "rack": zone.rack,
                "qty_to_collect": zone.qty_to_collect,
                "items": [line.as_dict() for line in zone.lines],
            }
            for zone in sheet.zones
        ],
        "available": sheet.zoned_count,
        "total_to_collect": sheet.total_to_collect,
        "no_location": [line.as_dict() for line in sheet.no_location],
        "no_location_count": len(sheet.no_location),
        "no_stock": [line.as_dict() for line in sheet.no_stock],
        "no_stock_count": len(sheet.no_stock),
        "completed_count": sheet.completed_count,
    }


@router.post("/tasks/{task_id}/complete")
async def complete_task(
    task_id: int,
    body: Optional[CompleteTaskIn] = None,
    service: PackingService = Depends(get_packing_service),
):
    create_shipment = body.create_shipment if body is not None else True
    with http_errors():
        result = await service.complete(task_id, create_shipment)
    return {"success": True, **result}
