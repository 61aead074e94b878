"""
Test Configuration and Fixtures
Shared testing infrastructure for Warehouse Hub
"""

import os
import tempfile

# settings are read at import time
os.environ.setdefault("WAREHOUSE_DATA_ROOT", tempfile.mkdtemp(prefix="warehouse-hub-test-"))
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import io
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import pandas as pd
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from warehouse_hub import db_models, db_models_ext  # noqa: F401
from warehouse_hub.database import Base, get_session, make_session_factory
from warehouse_hub.db_models import Product, ProductBarcode, ProductLocation, BarcodeType
from warehouse_hub.deps import get_client
from warehouse_hub.main import app
from warehouse_hub.services.slots import SlotDirectoryCache

MS = "https://api.moysklad.ru/api/remap/1.2"

# Test product ids (MoySklad uses UUIDs)
P1 = "11111111-1111-1111-1111-111111111111"
P2 = "22222222-2222-2222-2222-222222222222"
P3 = "33333333-3333-3333-3333-333333333333"
P4 = "44444444-4444-4444-4444-444444444444"


def product_href(product_id: str, kind: str = "product") -> str:
    return f"{MS}/entity/{kind}/{product_id}"


class FakeMoySkladClient:
    """In-memory stand-in for MoySkladClient; records the documents it is asked to create."""

    def __init__(self):
        self.store_name = "Склад хранения."
        self.products: List[Dict[str, Any]] = []
        self.stock_rows: List[Dict[str, Any]] = []
        self.slot_names: Dict[str, str] = {}
        self.slot_rows: List[Dict[str, Any]] = []
        self.orders: List[Dict[str, Any]] = []
        self.positions: Dict[str, List[Dict[str, Any]]] = {}
        self.images: Dict[str, Tuple[bytes, str]] = {}
        self.agent: Optional[Dict[str, Any]] = {"meta": {"href": f"{MS}/entity/counterparty/agent-1"}}
        self.fail_products = False
        self.fail_stock = False
        self.fail_slots = False
        self.fail_slot_ids: Set[str] = set()
        self.fail_documents = False
        self.slot_requests: List[List[str]] = []
        self.slot_directory_loads = 0
        self.supplies: List[Dict[str, Any]] = []
        self.enters: List[Dict[str, Any]] = []
        self.demands: List[Dict[str, Any]] = []

    # store / slots
    def store_id(self) -> str:
        return "store-1"

    def check_connection(self) -> Dict[str, Any]:
        return {"connected": True, "user": "test"}

    def get_store_slot_names(self, store_id: str) -> Dict[str, str]:
        self.slot_directory_loads += 1
        return dict(self.slot_names)

    def get_slot_stock(self, assortment_ids: Iterable[str], store_id: str) -> List[Dict[str, Any]]:
        ids = list(assortment_ids)
        self.slot_requests.append(ids)
        wanted = set(ids)
        if self.fail_slots or wanted & self.fail_slot_ids:
            raise RuntimeError("byslot report unavailable")
        return [r for r in self.slot_rows if r.get("assortmentId") in wanted]

    # catalog
    def get_all_products(self) -> List[Dict[str, Any]]:
        if self.fail_products:
            raise RuntimeError("products unavailable")
        return list(self.products)

    def get_stock(self) -> List[Dict[str, Any]]:
        if self.fail_stock:
            raise RuntimeError("stock report unavailable")
        return list(self.stock_rows)

    def get_purchase_orders(self) -> List[Dict[str, Any]]:
        return list(self.orders)

    def get_purchase_order_positions(self, order_id: str) -> List[Dict[str, Any]]:
        return list(self.positions.get(order_id, []))

    def get_product_image(self, product_id: str) -> Optional[Tuple[bytes, str]]:
        return self.images.get(product_id)

    # documents
    def get_default_store(self) -> Dict[str, Any]:
        return {"meta": {"href": f"{MS}/entity/store/store-1"}}

    def get_default_organization(self) -> Dict[str, Any]:
        return {"meta": {"href": f"{MS}/entity/organization/org-1"}}

    def get_default_agent(self) -> Optional[Dict[str, Any]]:
        return self.agent

    def create_supply(self, positions, agent_meta, organization_meta, store_meta,
                      purchase_order_meta=None, description=None) -> Dict[str, Any]:
        if self.fail_documents:
            raise RuntimeError("supply rejected")
        self.supplies.append({
            "positions": list(positions),
            "agent_meta": agent_meta,
            "organization_meta": organization_meta,
            "store_meta": store_meta,
            "purchase_order_meta": purchase_order_meta,
            "description": description,
        })
        return {"id": f"supply-{len(self.supplies)}"}

    def create_enter(self, positions, organization_meta, store_meta, description="") -> Dict[str, Any]:
        if self.fail_documents:
            raise RuntimeError("enter rejected")
        self.enters.append({"positions": list(positions), "description": description})
        return {"id": f"enter-{len(self.enters)}"}

    def create_demand(self, positions, store_meta, organization_meta, description="") -> Dict[str, Any]:
        if self.fail_documents:
            raise RuntimeError("demand rejected")
        self.demands.append({"positions": list(positions), "description": description})
        return {"id": f"demand-{len(self.demands)}"}


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test"""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    factory = make_session_factory(engine)
    async with factory() as session:
        yield session


@pytest.fixture
def fake_moysklad() -> FakeMoySkladClient:
    return FakeMoySkladClient()


@pytest.fixture
def slot_cache() -> SlotDirectoryCache:
    return SlotDirectoryCache(ttl_seconds=600)


@pytest_asyncio.fixture
async def client(db, fake_moysklad, slot_cache):
    """HTTP client with database and MoySklad overrides"""
    async def override_get_session():
        try:
            yield db
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_client] = lambda: fake_moysklad
    app.state.slot_cache = slot_cache
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def make_product(db):
    """Factory: add a product (optionally with extra barcodes and a cell) and flush"""
    async def _make(
        product_id: str,
        name: str,
        stock: float = 10,
        barcode: Optional[str] = None,
        article: Optional[str] = None,
        sku: Optional[str] = None,
        cell: Optional[str] = None,
        extra_barcodes: Iterable[str] = (),
        requires_marking: bool = False,
        price: float = 100.0,
    ) -> Product:
        product = Product(
            id=product_id,
            name=name,
            stock=stock,
            barcode=barcode,
            article=article,
            sku=sku,
            price=price,
            requires_marking=requires_marking,
            meta_href=product_href(product_id),
        )
        db.add(product)
        for code in extra_barcodes:
            db.add(ProductBarcode(product_id=product_id, barcode=code, barcode_type=BarcodeType.CODE128))
        if cell:
            db.add(ProductLocation(product_id=product_id, cell_address=cell))
        # committed, so a rolled-back request does not take the fixture data with it
        await db.commit()
        return product
    return _make


def xlsx_bytes(rows: List[Dict[str, Any]], header: bool = True, prefix_rows: Optional[List[List[Any]]] = None) -> bytes:
    """Build an XLSX file in memory"""
    buf = io.BytesIO()
    if prefix_rows:
        frame = pd.DataFrame(prefix_rows + [list(rows[0].keys())] + [list(r.values()) for r in rows])
        frame.to_excel(buf, index=False, header=False)
    else:
        pd.DataFrame(rows).to_excel(buf, index=False, header=header)
    return buf.getvalue()
