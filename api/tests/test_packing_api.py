"""
Tests for the packing API: task creation, scanning, boxes and completion
"""

import pytest
from sqlalchemy import update

from warehouse_hub.db_models import Product

from conftest import P1, P2, P3, P4, xlsx_bytes

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


async def create_task(client, items, name="T"):
    response = await client.post("/packing/tasks", json={"name": name, "items": items})
    assert response.status_code == 200, response.text
    return response.json()["task_id"]


class TestTaskUpload:
    """Test suite for XLSX task upload"""

    async def test_upload_matches_caps_and_reports(self, client, make_product):
        """Test matching by barcode and SKU, stock capping, not found and no-stock rows"""
        await make_product(P1, "Шлем", stock=10, barcode="4600000000001")
        await make_product(P2, "Фляга", stock=2, sku="S-2")
        await make_product(P3, "Нет в наличии", stock=0, barcode="333")
        data = xlsx_bytes([
            {"Штрихкод": "4600000000001", "Артикул": "", "Количество": 3},
            {"Штрихкод": "", "Артикул": "S-2", "Количество": 5},
            {"Штрихкод": "333", "Артикул": "", "Количество": 1},
            {"Штрихкод": "999", "Артикул": "", "Количество": 1},
        ])

        response = await client.post("/packing/tasks/upload", files={"file": ("task.xlsx", data, XLSX)})

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["created"] == 2
        assert body["total_quantity"] == 5
        assert [r["barcode"] for r in body["not_found"]] == ["999"]
        assert [r["product_id"] for r in body["skipped_no_stock"]] == [P3]

        detail = (await client.get(f"/packing/tasks/{body['task_id']}")).json()
        planned = {i["product_id"]: i["planned_qty"] for i in detail["items"]}
        assert planned == {P1: 3, P2: 2}

    async def test_upload_nothing_found(self, client):
        """Test that a list with no known products is rejected with details"""
        data = xlsx_bytes([{"Штрихкод": "999", "Количество": 1}])

        response = await client.post("/packing/tasks/upload", files={"file": ("task.xlsx", data, XLSX)})

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "Не найдено товаров"
        assert len(detail["not_found"]) == 1

    async def test_upload_bad_file(self, client):
        """Test that unreadable files are a 400"""
        response = await client.post("/packing/tasks/upload", files={"file": ("task.xlsx", b"junk", XLSX)})

        assert response.status_code == 400


class TestManualTasks:
    """Test suite for manual task creation and listing"""

    async def test_empty_items(self, client):
        """Test that a task needs at least one item"""
        response = await client.post("/packing/tasks", json={"items": []})

        assert response.status_code == 400
        assert response.json()["detail"] == "Не указаны товары"

    async def test_unknown_products(self, client):
        """Test that unknown product ids are rejected"""
        response = await client.post("/packing/tasks", json={"items": [{"productId": "nope", "quantity": 1}]})

        assert response.status_code == 400
        assert response.json()["detail"] == "Не найдено товаров"

    async def test_duplicates_merged_and_listed(self, client, make_product):
        """Test that repeated products become one line and show up in the list"""
        await make_product(P1, "Шлем")
        task_id = await create_task(client, [
            {"product_id": P1, "quantity": 2},
            {"product_id": P1, "quantity": 1},
        ])

        tasks = (await client.get("/packing/tasks")).json()

        assert tasks[0]["id"] == task_id
        assert tasks[0]["items_count"] == 1
        assert tasks[0]["total_items"] == 3
        assert tasks[0]["status"] == "active"

    async def test_no_stock_lines_reported_apart(self, client, make_product):
        """Test that zero-stock lines are excluded from the visible items and totals"""
        await make_product(P1, "Шлем", stock=5)
        await make_product(P3, "Пусто", stock=0)
        task_id = await create_task(client, [
            {"product_id": P1, "quantity": 2},
            {"product_id": P3, "quantity": 4},
        ])

        detail = (await client.get(f"/packing/tasks/{task_id}")).json()

        assert [i["product_id"] for i in detail["items"]] == [P1]
        assert [i["product_id"] for i in detail["no_stock_items"]] == [P3]
        assert detail["task"]["total_items"] == 2
        assert detail["task"]["no_stock_items"] == 1

    async def test_add_item(self, client, make_product):
        """Test adding to an existing line and adding a new line"""
        await make_product(P1, "Шлем")
        await make_product(P2, "Фляга")
        task_id = await create_task(client, [{"product_id": P1, "quantity": 1}])

        await client.post(f"/packing/tasks/{task_id}/items", json={"product_id": P1, "quantity": 2})
        response = await client.post(f"/packing/tasks/{task_id}/items", json={"product_id": P2})

        assert response.json()["total_items"] == 4

    async def test_missing_task(self, client):
        """Test that an unknown task id is a 404"""
        response = await client.get("/packing/tasks/999")

        assert response.status_code == 404


class TestScanning:
    """Test suite for scanning with boxes and marking codes"""

    @pytest.fixture
    async def task_id(self, client, make_product):
        await make_product(P1, "Обувь", barcode="4600000000001", requires_marking=True)
        await make_product(P2, "Фляга", barcode="222")
        await make_product(P3, "Чужой товар", barcode="333")
        return await create_task(client, [
            {"product_id": P1, "quantity": 2},
            {"product_id": P2, "quantity": 1},
        ])

    async def scan(self, client, task_id, **body):
        return await client.post(f"/packing/tasks/{task_id}/scan", json=body)

    async def new_box(self, client, task_id):
        response = await client.post(f"/packing/tasks/{task_id}/boxes")
        assert response.status_code == 200, response.text
        return response.json()["box"]

    async def test_unknown_and_foreign_barcodes(self, client, task_id):
        """Test 404 for unknown codes and 400 for products outside the task"""
        assert (await self.scan(client, task_id, barcode="nope")).status_code == 404

        response = await self.scan(client, task_id, barcode="333")
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "Товар не в задаче"

    async def test_empty_barcode(self, client, task_id):
        """Test that an empty scan is rejected"""
        response = await self.scan(client, task_id, barcode="  ")

        assert response.status_code == 400
        assert response.json()["detail"] == "Не указан штрихкод"

    async def test_marking_code_required_in_box(self, client, task_id):
        """Test that a marked product needs a code when packed into a box"""
        box = await self.new_box(client, task_id)

        response = await self.scan(client, task_id, barcode="4600000000001", boxId=box["id"])

        assert response.status_code == 400
        assert response.json()["detail"]["requires_marking"] is True

    async def test_marking_code_used_once(self, client, task_id):
        """Test that the same marking code cannot be packed twice"""
        box = await self.new_box(client, task_id)

        first = await self.scan(client, task_id, barcode="4600000000001", boxId=box["id"], markingCode="MC1")
        second = await self.scan(client, task_id, barcode="4600000000001", boxId=box["id"], markingCode="MC1")

        assert first.status_code == 200
        assert first.json()["scanned"] == 1
        assert second.status_code == 409

    async def test_overscan_rejected(self, client, task_id):
        """Test that a completed line cannot be scanned again"""
        response = await self.scan(client, task_id, barcode="222")
        assert response.json()["complete"] is True

        response = await self.scan(client, task_id, barcode="222")

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "Товар уже собран"

    async def test_closed_box(self, client, task_id):
        """Test that a closed box does not accept scans"""
        box = await self.new_box(client, task_id)
        assert (await client.post(f"/packing/tasks/{task_id}/boxes/{box['id']}/close")).status_code == 200

        response = await self.scan(client, task_id, barcode="222", boxId=box["id"])

        assert response.status_code == 400
        assert response.json()["detail"] == "Короб закрыт"

    async def test_box_contents(self, client, task_id):
        """Test box numbering and grouped contents"""
        first = await self.new_box(client, task_id)
        second = await self.new_box(client, task_id)
        await self.scan(client, task_id, barcode="4600000000001", boxId=second["id"], markingCode="MC1")
        await self.scan(client, task_id, barcode="4600000000001", boxId=second["id"], markingCode="MC2")

        boxes = (await client.get(f"/packing/tasks/{task_id}/boxes")).json()

        assert [b["number"] for b in boxes["boxes"]] == [first["number"], second["number"]] == [1, 2]
        assert boxes["boxes"][1]["items_qty"] == 2
        assert boxes["items"] == [{
            "box_id": second["id"],
            "box_number": 2,
            "product_id": P1,
            "name": "Обувь",
            "barcode": "4600000000001",
            "qty": 2,
            "requires_marking": True,
        }]

    async def test_close_box_with_unmarked_units(self, client, db, make_product):
        """Test that a box holding marked products without codes cannot be closed"""
        await make_product(P4, "Кроссовки", barcode="444")
        task_id = await create_task(client, [{"product_id": P4, "quantity": 1}])
        box = await self.new_box(client, task_id)
        await self.scan(client, task_id, barcode="444", boxId=box["id"])
        await db.execute(update(Product).where(Product.id == P4).values(requires_marking=True))
        await db.commit()

        response = await client.post(f"/packing/tasks/{task_id}/boxes/{box['id']}/close")

        assert response.status_code == 400
        assert response.json()["detail"]["missing"] == [{"name": "Кроссовки", "cnt": 1}]


class TestCompletion:
    """Test suite for task completion"""

    @pytest.fixture
    async def task_id(self, client, make_product):
        await make_product(P1, "Шлем", barcode="111", price=250.0)
        return await create_task(client, [{"product_id": P1, "quantity": 1}], name="Заказ 1")

    async def test_unscanned_lines(self, client, task_id):
        """Test that every line must be scanned first"""
        response = await client.post(f"/packing/tasks/{task_id}/complete")

        assert response.status_code == 400
        assert response.json()["detail"]["remaining"] == 1

    async def test_open_boxes(self, client, task_id):
        """Test that open boxes block completion"""
        box = (await client.post(f"/packing/tasks/{task_id}/boxes")).json()["box"]
        await client.post(f"/packing/tasks/{task_id}/scan", json={"barcode": "111", "box_id": box["id"]})

        response = await client.post(f"/packing/tasks/{task_id}/complete")

        assert response.status_code == 400
        assert response.json()["detail"]["open_boxes"] == 1

    async def test_complete_creates_shipment(self, client, task_id, fake_moysklad):
        """Test the demand document and the final status"""
        await client.post(f"/packing/tasks/{task_id}/scan", json={"barcode": "111"})

        response = await client.post(f"/packing/tasks/{task_id}/complete")

        assert response.status_code == 200, response.text
        assert response.json()["shipment_id"] == "demand-1"
        assert fake_moysklad.demands[0]["description"] == "Сборка: Заказ 1"
        assert fake_moysklad.demands[0]["positions"][0]["quantity"] == 1
        detail = (await client.get(f"/packing/tasks/{task_id}")).json()
        assert detail["task"]["status"] == "completed"

        again = await client.post(f"/packing/tasks/{task_id}/complete")
        assert again.status_code == 400
        assert again.json()["detail"] == "Задача не активна"

    async def test_without_shipment(self, client, task_id, fake_moysklad):
        """Test that the shipment can be skipped"""
        await client.post(f"/packing/tasks/{task_id}/scan", json={"barcode": "111"})

        response = await client.post(f"/packing/tasks/{task_id}/complete", json={"createShipment": False})

        assert response.json()["shipment_id"] is None
        assert fake_moysklad.demands == []

    async def test_shipment_failure_does_not_block(self, client, task_id, fake_moysklad):
        """Test that a rejected demand still completes the task"""
        fake_moysklad.fail_documents = True
        await client.post(f"/packing/tasks/{task_id}/scan", json={"barcode": "111"})

        response = await client.post(f"/packing/tasks/{task_id}/complete")

        assert response.status_code == 200
        assert response.json()["shipment_id"] is None


class TestRouteSheetEndpoint:
    """Test suite for the route sheet endpoint"""

    async def test_route_sheet(self, client, make_product):
        """Test zones, unlocated lines and the totals"""
        await make_product(P1, "На стеллаже", cell="Стеллаж 41 полка 1 ячейка A")
        await make_product(P2, "Без места")
        task_id = await create_task(client, [
            {"product_id": P1, "quantity": 3},
            {"product_id": P2, "quantity": 1},
        ])

        sheet = (await client.get(f"/packing/tasks/{task_id}/route-sheet")).json()

        assert [z["rack"] for z in sheet["zones"]] == [41]
        assert sheet["zones"][0]["items"][0]["shelf"] == 1
        assert sheet["total_to_collect"] == 3
        assert [ln["product_id"] for ln in sheet["no_location"]] == [P2]
