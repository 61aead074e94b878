from __future__ import annotations

import datetime as dt
from collections import deque
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_session
from ..logging_setup import log_file_path
from ..services.journal import recent_actions
from ..settings import settings

router = APIRouter(prefix="/logs", tags=["logs"])

MAX_TAIL_LINES = 5000


@router.get("/actions")
async def get_recent_actions(
    limit: int = Query(100, ge=1, le=1000),
    action: Optional[str] = Query(None, description="e.g. sync_completed, packing_task_created"),
    db: AsyncSession = Depends(get_session),
):
    """Business journal (action_logs), newest first."""
    entries = await recent_actions(db, limit, action)
    return {
        "items": [
            {
                "id": e.id,
                "action": e.action,
                "entity_type": e.entity_type,
                "entity_id": e.entity_id,
                "details": e.details,
                "created_at": e.created_at,
            }
            for e in entries
        ]
    }


@router.get("/service")
def tail_service_log(lines: int = Query(200, ge=1, le=MAX_TAIL_LINES)):
    """Last lines of the rotating service log."""
    fp = log_file_path(settings)
    if not fp.is_file():
        return {"path": str(fp), "exists": False, "lines": []}

    stat = fp.stat()
    with fp.open("r", encoding="utf-8", errors="replace") as fh:
        tail = deque(fh, maxlen=lines)
    return {
        "path": str(fp),
        "exists": True,
        "size": stat.st_size,
        "mtime_iso": dt.datetime.fromtimestamp(stat.st_mtime).isoformat(timespec="seconds"),
        "lines": [ln.rstrip("\n") for ln in tail],
    }
