# Warehouse Hub - MoySklad packing / receiving backend
from __future__ import annotations
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .settings import settings
from warehouse_hub.database import init_db, create_tables, close_db, check_db_health
from warehouse_hub.routers.products import router as products_router
from warehouse_hub.routers.packing import router as packing_router
from warehouse_hub.routers.receiving import router as receiving_router
from warehouse_hub.routers.logs import router as logs_router
from warehouse_hub.services.slots import SlotDirectoryCache

VERSION = "1.0.0"

# ---------------------------------------------------------
# Logging setup
# ---------------------------------------------------------
from warehouse_hub.logging_setup import setup_logging
setup_logging(settings)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------
# Lifespan: Database init/cleanup
# ---------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    await init_db()
    await create_tables()
    app.state.slot_cache = SlotDirectoryCache(settings.SLOT_CACHE_TTL_SECONDS)
    logger.info("Database ready")
    yield
    # Shutdown
    await close_db()
    logger.info("Database disconnected")

# ---------------------------------------------------------
# FastAPI app + CORS
# ---------------------------------------------------------
app = FastAPI(
    title="Warehouse Hub API",
    version=VERSION,
    description="Packing, receiving and storage locations on top of MoySklad",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)

app.include_router(products_router)
app.include_router(packing_router)
app.include_router(receiving_router)
app.include_router(logs_router)

# ---------------------------------------------------------
# Endpoints
# ---------------------------------------------------------
@app.get("/health")
async def health():
    """Health check endpoint with database status."""
    result = {"status": "ok", "version": VERSION}
    db_health = await check_db_health()
    result["database"] = db_health
    if db_health.get("status") != "healthy":
        result["status"] = "degraded"
    return result
