# warehouse_hub/services/journal.py
"""Business action journal (`action_logs`)."""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from warehouse_hub.db_models import ActionLog

logger = logging.getLogger(__name__)


async def log_action(
    db: AsyncSession,
    action: str,
    entity_type: Optional[str] = None,
    entity_id: Any = None,
    details: Optional[Dict[str, Any]] = None,
) -> ActionLog:
    entry = ActionLog(
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        details=details or {},
    )
    db.add(entry)
    logger.info(f"{action} {entity_type or ''}:{entry.entity_id or ''} {details or ''}".rstrip())
    return entry


async def recent_actions(db: AsyncSession, limit: int = 100, action: Optional[str] = None) -> List[ActionLog]:
    stmt = select(ActionLog).order_by(ActionLog.created_at.desc(), ActionLog.id.desc()).limit(limit)
    if action:
        stmt = stmt.where(ActionLog.action == action)
    result = await db.execute(stmt)
    return list(result.scalars())
