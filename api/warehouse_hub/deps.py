# warehouse_hub/deps.py
"""Shared FastAPI dependencies and service-error translation for the routers."""
from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from warehouse_hub.adapters.moysklad import MoySkladClient, MoySkladNotConfigured, get_moysklad_client
from warehouse_hub.database import get_session
from warehouse_hub.services.errors import (
    ConflictError, NotFoundError, UpstreamUnavailableError, ValidationFailed
)
from warehouse_hub.services.slots import SlotDirectoryCache, SlotReconciliationService
from warehouse_hub.settings import settings

logger = logging.getLogger(__name__)


def get_client() -> Optional[MoySkladClient]:
    """MoySklad client, or None while credentials are missing (vendor calls are then skipped)."""
    try:
        return get_moysklad_client()
    except MoySkladNotConfigured as e:
        logger.warning(str(e))
        return None


def get_slot_cache(request: Request) -> SlotDirectoryCache:
    cache = getattr(request.app.state, "slot_cache", None)
    if cache is None:
        cache = request.app.state.slot_cache = SlotDirectoryCache(settings.SLOT_CACHE_TTL_SECONDS)
    return cache


def get_slot_service(
    db: AsyncSession = Depends(get_session),
    client: Optional[MoySkladClient] = Depends(get_client),
    cache: SlotDirectoryCache = Depends(get_slot_cache),
) -> SlotReconciliationService:
    return SlotReconciliationService(db, client, cache)


def _detail(e: Exception):
    extra = getattr(e, "extra", None)
    if extra:
        return {"error": str(e), **extra}
    return str(e)


@contextmanager
def http_errors() -> Iterator[None]:
    """Translate service exceptions into HTTPException."""
    try:
        yield
    except NotFoundError as e:
        raise HTTPException(404, detail=_detail(e)) from e
    except ConflictError as e:
        raise HTTPException(409, detail=_detail(e)) from e
    except ValidationFailed as e:
        raise HTTPException(400, detail=_detail(e)) from e
    except UpstreamUnavailableError as e:
        raise HTTPException(502, detail=_detail(e)) from e
