# warehouse_hub/routers/receiving.py
"""
Receiving Router - purchase orders and receiving sessions.
"""
from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from warehouse_hub.adapters.moysklad import MoySkladClient
from warehouse_hub.database import get_session
from warehouse_hub.deps import get_client, http_errors
from warehouse_hub.models import (
    CreateSessionIn, DefectIn, ReceivingItemIn, ReceivingItemPatch, ReceivingScanIn
)
from warehouse_hub.services.receiving import ReceivingService

router = APIRouter(prefix="/receiving", tags=["Receiving"])


def get_receiving_service(
    db: AsyncSession = Depends(get_session),
    client: Optional[MoySkladClient] = Depends(get_client),
) -> ReceivingService:
    return ReceivingService(db, client)


# ============================================================================
# Purchase orders
# ============================================================================

@router.get("/orders")
async def list_orders(service: ReceivingService = Depends(get_receiving_service)):
    return await service.list_orders()


@router.get("/orders/{order_id}")
async def get_order(order_id: str, service: ReceivingService = Depends(get_receiving_service)):
    with http_errors():
        return await service.get_order(order_id)


# ============================================================================
# Sessions
# ============================================================================

@router.get("/sessions")
async def list_sessions(service: ReceivingService = Depends(get_receiving_service)):
    return await service.list_sessions()


@router.get("/sessions/{session_id}")
async def get_session_detail(session_id: int, service: ReceivingService = Depends(get_receiving_service)):
    with http_errors():
        return await service.session_detail(session_id)


@router.post("/sessions")
async def create_session(
    body: Optional[CreateSessionIn] = None,
    service: ReceivingService = Depends(get_receiving_service),
):
    """New session; with a purchase order its positions are copied as ordered lines."""
    with http_errors():
        session = await service.create_session(body.purchase_order_id if body else None)
    return {"success": True, "session_id": session.id, "name": session.name}


@router.post("/sessions/{session_id}/scan")
async def scan(session_id: int, body: ReceivingScanIn, service: ReceivingService = Depends(get_receiving_service)):
    with http_errors():
        result = await service.scan(session_id, body.barcode, body.quantity)
    return {"success": True, **result}


@router.post("/sessions/{session_id}/undo")
async def undo(session_id: int, service: ReceivingService = Depends(get_receiving_service)):
    """Revert the last scan of the session (one step)."""
    with http_errors():
        result = await service.undo_last_scan(session_id)
    return {"success": True, **result}


@router.patch("/sessions/{session_id}/items/{item_id}")
async def update_item(
    session_id: int,
    item_id: int,
    body: ReceivingItemPatch,
    service: ReceivingService = Depends(get_receiving_service),
):
    with http_errors():
        item = await service.update_item(session_id, item_id, body.received_qty, body.defect_qty)
    return {"success": True, "received_qty": item.received_qty, "defect_qty": item.defect_qty}


@router.post("/sessions/{session_id}/items/{item_id}/defect")
async def set_defect(
    session_id: int,
    item_id: int,
    body: DefectIn,
    service: ReceivingService = Depends(get_receiving_service),
):
    with http_errors():
        result = await service.set_defect(session_id, item_id, body.defect_qty)
    return {"success": True, **result}


@router.post("/sessions/{session_id}/items")
async def add_item(
    session_id: int,
    body: ReceivingItemIn,
    service: ReceivingService = Depends(get_receiving_service),
):
    with http_errors():
        result = await service.add_item(session_id, body.product_id, body.quantity, body.is_extra)
    return {"success": True, **result}


@router.post("/sessions/{session_id}/complete")
async def complete(session_id: int, service: ReceivingService = Depends(get_receiving_service)):
    """Post a supply (ordered lines) and an enter (extra lines) to MoySklad."""
    with http_errors():
        result = await service.complete(session_id)
    return {"success": True, **result}


@router.post("/sessions/{session_id}/cancel")
async def cancel(session_id: int, service: ReceivingService = Depends(get_receiving_service)):
    with http_errors():
        session = await service.cancel(session_id)
    return {"success": True, "status": session.status.value}
