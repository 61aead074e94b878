# -*- coding: utf-8 -*-
"""
MoySklad JSON API client (remap 1.2).

Blocking `requests` client; async code calls it through
`starlette.concurrency.run_in_threadpool`.

Endpoints used:
  /entity/product, /entity/variant          catalog (paged, limit 1000)
  /report/stock/all, /report/stock/bystore  stock for one store
  /entity/store/{id}/slots                  slot directory
  /report/stock/byslot/current              stock per slot (needs assortmentId filter)
  /entity/purchaseorder                     supplier orders
  /entity/product/{id}/images, /download    product pictures
  /entity/supply, /entity/enter, /entity/demand
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import requests
from requests.auth import HTTPBasicAuth

from warehouse_hub.settings import settings

logger = logging.getLogger(__name__)

PAGE_LIMIT = 1000
ORDERS_PAGE_LIMIT = 100
ORDERS_MAX = 500


class MoySkladNotConfigured(RuntimeError):
    pass


def _last_segment(href: Optional[str]) -> Optional[str]:
    s = (href or "").strip().rstrip("/")
    return s.rsplit("/", 1)[-1] if s else None


def _positions(items: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Document positions; prices go to the API in kopecks."""
    return [
        {
            "quantity": item["quantity"],
            "price": round(float(item.get("price") or 0) * 100),
            "assortment": {
                "meta": {
                    "href": item["product_href"],
                    "type": "product",
                    "mediaType": "application/json",
                }
            },
        }
        for item in items
    ]


class MoySkladClient:
    def __init__(
        self,
        base_url: str = "https://api.moysklad.ru/api/remap/1.2",
        token: Optional[str] = None,
        login: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 60.0,
        store_id: Optional[str] = None,
        store_name: Optional[str] = None,
        stock_mode: str = "all",
        session: Optional[requests.Session] = None,
    ):
        if not token and not (login and password):
            raise MoySkladNotConfigured("MOYSKLAD_TOKEN or MOYSKLAD_LOGIN + MOYSKLAD_PASSWORD is not configured")

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.store_name = (store_name or "").strip()
        self.stock_mode = stock_mode or "all"
        self._store_id = (store_id or "").strip() or None

        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json;charset=utf-8",
            # some proxies answer 415 to GETs without Content-Type, and 400 to br
            "Content-Type": "application/json",
            "Accept-Encoding": "gzip",
        })
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        else:
            self.session.auth = HTTPBasicAuth(login, password)

    @classmethod
    def from_settings(cls, cfg=settings) -> "MoySkladClient":
        return cls(
            base_url=cfg.MOYSKLAD_BASE_URL,
            token=cfg.MOYSKLAD_TOKEN,
            login=cfg.MOYSKLAD_LOGIN,
            password=cfg.MOYSKLAD_PASSWORD,
            timeout=cfg.MOYSKLAD_TIMEOUT,
            store_id=cfg.MOYSKLAD_STORE_ID,
            store_name=cfg.MOYSKLAD_STORE_NAME,
            stock_mode=cfg.MOYSKLAD_STOCK_MODE,
        )

    # ---------------------------------------------------------------- HTTP --

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        r = self.session.get(self._url(path), params=params or {}, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        r = self.session.post(self._url(path), json=body, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def _fetch_all(self, path: str, params: Optional[Dict[str, Any]] = None, limit: int = PAGE_LIMIT) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            logger.debug(f"GET {path} offset={offset}")
            data = self._get(path, {**(params or {}), "offset": offset, "limit": limit})
            part = data.get("rows") or []
            rows.extend(part)
            if len(part) < limit:
                break
            offset += limit
        return rows

    # -------------------------------------------------------------- stores --

    def check_connection(self) -> Dict[str, Any]:
        try:
            data = self._get("/entity/employee", {"limit": 1})
        except requests.RequestException as e:
            return {"connected": False, "error": str(e)}
        rows = data.get("rows") or []
        return {"connected": True, "user": rows[0].get("name") if rows else None}

    def list_stores(self) -> List[Dict[str, Any]]:
        return self._fetch_all("/entity/store")

    def find_store(self, name: str) -> Optional[Dict[str, Any]]:
        name = (name or "").strip()
        if not name:
            return None
        for store in self.list_stores():
            if str(store.get("name") or "").strip() == name:
                return store
        return None

    def store_id(self) -> Optional[str]:
        """MOYSKLAD_STORE_ID, else the store named MOYSKLAD_STORE_NAME (exact match)."""
        if self._store_id:
            return self._store_id
        store = self.find_store(self.store_name)
        if store is None:
            return None
        self._store_id = store.get("id") or _last_segment((store.get("meta") or {}).get("href"))
        return self._store_id

    def get_default_store(self) -> Dict[str, Any]:
        return (self._get("/entity/store", {"limit": 1}).get("rows") or [None])[0]

    def get_default_organization(self) -> Dict[str, Any]:
        return (self._get("/entity/organization", {"limit": 1}).get("rows") or [None])[0]

    def get_default_agent(self) -> Optional[Dict[str, Any]]:
        return (self._get("/entity/counterparty", {"limit": 1}).get("rows") or [None])[0]

    # ------------------------------------------------------------- catalog --

    def get_all_products(self) -> List[Dict[str, Any]]:
        """Products and variants; barcodes often live on variants or their packs."""
        rows = self._fetch_all("/entity/product", {"expand": "images,images.miniature"})
        logger.info(f"Fetched {len(rows)} products")
        variants = self._fetch_all(
            "/entity/variant",
            {"expand": "images,images.miniature,product,product.images,product.images.miniature"},
        )
        logger.info(f"Fetched {len(variants)} variants")
        return rows + variants

    def get_stock(self) -> List[Dict[str, Any]]:
        """
        Stock rows for the configured store.

        `report/stock/all` filtered by store; when the account rejects that
        filter, `report/stock/bystore` is normalized into the same row shape
        (selected store, or the sum over all stores when none is configured).
        """
        store = self.find_store(self.store_name) if self.store_name else None
        store_href = (store or {}).get("meta", {}).get("href")

        params: Dict[str, Any] = {"stockMode": self.stock_mode, "expand": "assortment"}
        if store_href:
            params["filter"] = f"store={store_href}"
        try:
            return self._fetch_all("/report/stock/all", params)
        except requests.RequestException as e:
            logger.warning(f"report/stock/all failed ({e}); falling back to report/stock/bystore")

        flt = f"store={store_href};stockMode={self.stock_mode}" if store_href else f"stockMode={self.stock_mode}"
        rows = self._fetch_all("/report/stock/bystore", {"stockMode": self.stock_mode, "filter": flt})
        return [self._bystore_row(r) for r in rows]

    def _bystore_row(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        by_store = row.get("stockByStore") or []
        picked = None
        if self.store_name:
            picked = next((s for s in by_store if str(s.get("name") or "").strip() == self.store_name), None)
        if picked is not None:
            stock = picked.get("stock", picked.get("quantity")) or 0
        else:
            stock = sum(float(s.get("stock", s.get("quantity")) or 0) for s in by_store)
        return {
            "assortment": {"meta": row.get("meta")},
            "stock": stock,
            "barcodes": row.get("barcodes"),
        }

    # --------------------------------------------------------------- slots --

    def get_store_slots(self, store_id: str) -> List[Dict[str, Any]]:
        # slots are only reachable under their store
        return self._fetch_all(f"/entity/store/{store_id}/slots")

    def get_store_slot_names(self, store_id: str) -> Dict[str, str]:
        return {str(s["id"]): s.get("name") or "" for s in self.get_store_slots(store_id) if s.get("id")}

    def get_slot_stock(self, assortment_ids: Sequence[str], store_id: str) -> List[Dict[str, Any]]:
        """One `byslot/current` request; callers chunk the ids (URL length)."""
        if not assortment_ids:
            return []
        flt = f"assortmentId={','.join(assortment_ids)};storeId={store_id}"
        return self._get("/report/stock/byslot/current", {"filter": flt}).get("rows") or []

    # ------------------------------------------------------ purchase orders --

    def get_purchase_orders(self) -> List[Dict[str, Any]]:
        orders: List[Dict[str, Any]] = []
        offset = 0
        while True:
            data = self._get("/entity/purchaseorder", {
                "offset": offset,
                "limit": ORDERS_PAGE_LIMIT,
                "expand": "agent,positions",
                "filter": "applicable=true",
                "order": "moment,desc",
            })
            part = data.get("rows") or []
            orders.extend(part)
            if len(part) < ORDERS_PAGE_LIMIT or len(orders) >= ORDERS_MAX:
                break
            offset += ORDERS_PAGE_LIMIT
        return orders[:ORDERS_MAX]

    def get_purchase_order_positions(self, order_id: str) -> List[Dict[str, Any]]:
        return self._fetch_all(f"/entity/purchaseorder/{order_id}/positions", {"expand": "assortment"})

    # -------------------------------------------------------------- images --

    def get_product_image(self, product_id: str) -> Optional[Tuple[bytes, str]]:
        """
        First image of a product as (content, content type), or None.

        Image links in product payloads need the API credentials, so the
        bytes are downloaded here and served by our own endpoint.
        """
        rows = self._get(f"/entity/product/{product_id}/images").get("rows") or []
        if not rows:
            return None
        image = rows[0]
        image_id = image.get("id") or _last_segment((image.get("meta") or {}).get("href"))
        if not image_id:
            return None
        r = self.session.get(self._url(f"/download/{image_id}"), headers={"Accept": "*/*"}, timeout=self.timeout)
        r.raise_for_status()
        return r.content, r.headers.get("Content-Type") or "image/jpeg"

    # ----------------------------------------------------------- documents --

    def create_supply(
        self,
        positions: Iterable[Mapping[str, Any]],
        agent_meta: Dict[str, Any],
        organization_meta: Dict[str, Any],
        store_meta: Dict[str, Any],
        purchase_order_meta: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "organization": {"meta": organization_meta},
            "store": {"meta": store_meta},
            "agent": {"meta": agent_meta},
            "positions": _positions(positions),
        }
        if description:
            body["description"] = description
        if purchase_order_meta:
            body["purchaseOrder"] = {"meta": purchase_order_meta}
        return self._post("/entity/supply", body)

    def create_enter(
        self,
        positions: Iterable[Mapping[str, Any]],
        organization_meta: Dict[str, Any],
        store_meta: Dict[str, Any],
        description: str = "",
    ) -> Dict[str, Any]:
        return self._post("/entity/enter", {
            "organization": {"meta": organization_meta},
            "store": {"meta": store_meta},
            "description": description or "Оприходование",
            "positions": _positions(positions),
        })

    def create_demand(
        self,
        positions: Iterable[Mapping[str, Any]],
        store_meta: Dict[str, Any],
        organization_meta: Dict[str, Any],
        description: str = "",
    ) -> Dict[str, Any]:
        agent = self.get_default_agent()
        if not agent:
            raise RuntimeError("No counterparty found for the shipment")
        return self._post("/entity/demand", {
            "organization": {"meta": organization_meta},
            "store": {"meta": store_meta},
            "agent": {"meta": agent["meta"]},
            "description": description or "Отгрузка со склада",
            "positions": _positions(positions),
        })


@lru_cache(maxsize=1)
def get_moysklad_client() -> MoySkladClient:
    """Process-wide client built from settings; raises MoySkladNotConfigured."""
    return MoySkladClient.from_settings(settings)
