"""
Tests for the MoySklad HTTP client against a scripted requests session
"""

import pytest
import requests

from warehouse_hub.adapters.moysklad import MoySkladClient, MoySkladNotConfigured

BASE = "https://ms.test/api/remap/1.2"


class FakeResponse:
    def __init__(self, payload, status=200, content=b"", headers=None):
        self.payload = payload
        self.status = status
        self.content = content
        self.headers = headers or {}

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.payload


class FakeSession:
    """Answers GETs by path through a handler; records every call"""

    def __init__(self, handler):
        self.handler = handler
        self.headers = {}
        self.auth = None
        self.calls = []
        self.posts = []

    def get(self, url, params=None, headers=None, timeout=None):
        path = url[len(BASE):]
        self.calls.append((path, dict(params or {})))
        return self.handler(path, params or {})

    def post(self, url, json=None, timeout=None):
        self.posts.append((url[len(BASE):], json))
        return FakeResponse({"id": "doc-1"})


def make_client(handler, **kwargs):
    session = FakeSession(handler)
    client = MoySkladClient(base_url=BASE, token="t", session=session, **kwargs)
    return client, session


class TestMoySkladClient:
    """Test suite for MoySkladClient"""

    def test_requires_credentials(self):
        """Test that a client without token or login is refused"""
        with pytest.raises(MoySkladNotConfigured):
            MoySkladClient(base_url=BASE)

    def test_bearer_header(self):
        """Test that the token goes into the Authorization header"""
        _, session = make_client(lambda path, params: FakeResponse({}))

        assert session.headers["Authorization"] == "Bearer t"

    def test_fetch_all_pages(self):
        """Test that paging continues while pages are full"""
        def handler(path, params):
            offset = params["offset"]
            rows = [{"id": str(i)} for i in range(offset, min(offset + 1000, 1500))]
            return FakeResponse({"rows": rows})

        client, session = make_client(handler)

        rows = client._fetch_all("/entity/product")

        assert len(rows) == 1500
        assert [p["offset"] for _, p in session.calls] == [0, 1000]

    def test_store_id_by_exact_name(self):
        """Test that the store is found by its exact name, trailing dot included"""
        def handler(path, params):
            return FakeResponse({"rows": [
                {"id": "s-0", "name": "Склад хранения"},
                {"id": "s-1", "name": "Склад хранения."},
            ]})

        client, _ = make_client(handler, store_name="Склад хранения.")

        assert client.store_id() == "s-1"

    def test_stock_falls_back_to_bystore(self):
        """Test that a rejected stock/all report is replaced by bystore rows for the store"""
        def handler(path, params):
            if path == "/entity/store":
                return FakeResponse({"rows": [{"name": "Main", "meta": {"href": f"{BASE}/entity/store/s-1"}}]})
            if path == "/report/stock/all":
                return FakeResponse({}, status=400)
            return FakeResponse({"rows": [{
                "meta": {"href": f"{BASE}/entity/product/p-1"},
                "barcodes": [{"ean13": "4600000000001"}],
                "stockByStore": [{"name": "Other", "stock": 9}, {"name": "Main", "stock": 4}],
            }]})

        client, _ = make_client(handler, store_name="Main")

        rows = client.get_stock()

        assert rows == [{
            "assortment": {"meta": {"href": f"{BASE}/entity/product/p-1"}},
            "stock": 4,
            "barcodes": [{"ean13": "4600000000001"}],
        }]

    def test_supply_body(self):
        """Test prices in kopecks, the order link and the description"""
        client, session = make_client(lambda path, params: FakeResponse({}))

        client.create_supply(
            [{"product_href": f"{BASE}/entity/product/p-1", "quantity": 2, "price": 12.5}],
            {"href": "agent"}, {"href": "org"}, {"href": "store"},
            purchase_order_meta={"href": "po"},
            description="БРАК:\n• A-1: 1 шт",
        )

        path, body = session.posts[0]
        assert path == "/entity/supply"
        assert body["positions"][0]["price"] == 1250
        assert body["purchaseOrder"] == {"meta": {"href": "po"}}
        assert body["description"] == "БРАК:\n• A-1: 1 шт"

    def test_slot_stock_filter(self):
        """Test the byslot filter with assortment ids and store"""
        client, session = make_client(lambda path, params: FakeResponse({"rows": [{"slotId": "x"}]}))

        rows = client.get_slot_stock(["a", "b"], "s-1")

        assert rows == [{"slotId": "x"}]
        assert session.calls[0] == ("/report/stock/byslot/current", {"filter": "assortmentId=a,b;storeId=s-1"})

    def test_check_connection_error(self):
        """Test that HTTP errors are reported as disconnected"""
        client, _ = make_client(lambda path, params: FakeResponse({}, status=401))

        assert client.check_connection()["connected"] is False

    def test_product_image_download(self):
        """Test that the first image is downloaded by the id taken from its href"""
        def handler(path, params):
            if path == "/entity/product/p-1/images":
                return FakeResponse({"rows": [
                    {"meta": {"href": f"{BASE}/entity/product/p-1/images/0e3c2a0f-1111-4c4c-9a9a-0123456789ab"}},
                    {"id": "second"},
                ]})
            return FakeResponse(None, content=b"jpeg-bytes", headers={"Content-Type": "image/jpeg"})

        client, session = make_client(handler)

        assert client.get_product_image("p-1") == (b"jpeg-bytes", "image/jpeg")
        assert session.calls[-1][0] == "/download/0e3c2a0f-1111-4c4c-9a9a-0123456789ab"

    def test_product_without_images(self):
        """Test that a product with no images gives None without a download"""
        client, session = make_client(lambda path, params: FakeResponse({"rows": []}))

        assert client.get_product_image("p-1") is None
        assert len(session.calls) == 1

    def test_product_image_download_error(self):
        """Test that a failing download raises"""
        def handler(path, params):
            if path.endswith("/images"):
                return FakeResponse({"rows": [{"id": "img-1"}]})
            return FakeResponse(None, status=404)

        client, _ = make_client(handler)

        with pytest.raises(requests.HTTPError):
            client.get_product_image("p-1")
