"""
Tests for barcode extraction and product lookup
"""

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from warehouse_hub.db_models import BarcodeType, Product
from warehouse_hub.services.identifiers import (
    BarcodeInfo, ProductIdentifierService, classify_barcode, extract_barcodes
)

from conftest import P1, P2


class TestClassifyBarcode:
    """Test suite for classify_barcode"""

    def test_types(self):
        """Test EAN-13, EAN-8, OZN and free-form codes"""
        assert classify_barcode("4600000000001") == BarcodeType.EAN13
        assert classify_barcode("46000001") == BarcodeType.EAN8
        assert classify_barcode("OZN1234567890") == BarcodeType.CODE128
        assert classify_barcode("ABC-1") == BarcodeType.CODE128


class TestExtractBarcodes:
    """Test suite for extract_barcodes"""

    def test_product_then_pack_barcodes(self):
        """Test that pack barcodes follow product barcodes and duplicates are dropped"""
        payload = {
            "barcodes": [{"ean13": "4600000000001"}, "4600000000001"],
            "packs": [
                {"name": "Упаковка (ШК) Ozon", "barcodes": [{"code128": "OZN555"}]},
                {"name": "Коробка", "barcode": "2000000000015"},
            ],
        }

        infos = extract_barcodes(payload)

        assert [i.barcode for i in infos] == ["4600000000001", "OZN555", "2000000000015"]
        assert infos[0].pack_name is None
        assert infos[1] == BarcodeInfo("OZN555", BarcodeType.CODE128, "Упаковка (ШК) Ozon")

    def test_packs_rows_shape(self):
        """Test the {"rows": [...]} shape of packs"""
        infos = extract_barcodes({"packs": {"rows": [{"barcodes": [{"gtin": "04600000000001"}]}]}})

        assert [i.barcode for i in infos] == ["04600000000001"]

    def test_no_barcodes(self):
        """Test that a payload without barcodes gives an empty list"""
        assert extract_barcodes({"name": "x"}) == []


class TestProductIdentifierService:
    """Test suite for ProductIdentifierService"""

    async def test_find_by_pack_barcode(self, db, make_product):
        """Test lookup through product_barcodes"""
        await make_product(P1, "Item", barcode="4600000000001", extra_barcodes=["OZN555"])
        service = ProductIdentifierService(db)

        assert (await service.find_product_by_barcode("4600000000001")).id == P1
        assert (await service.find_product_by_barcode(" OZN555 ")).id == P1
        assert await service.find_product_by_barcode("nope") is None

    async def test_find_product_fallbacks(self, db, make_product):
        """Test barcode, then SKU/article, then name"""
        await make_product(P1, "Велосипед горный", sku="S-1", article="A-1")
        await make_product(P2, "Шлем", barcode="111")
        service = ProductIdentifierService(db)

        assert (await service.find_product(barcode="999", code="A-1")).id == P1
        assert (await service.find_product(code="S-1")).id == P1
        assert (await service.find_product(name="горный")).id == P1
        assert (await service.find_product(barcode="111", code="S-1")).id == P2
        assert await service.find_product() is None

    async def test_replace_barcodes_diffs_rows(self, db, make_product):
        """Test that barcode rows are updated, removed and added in one flush"""
        await make_product(P1, "Item", extra_barcodes=["KEEP", "DROP"])
        service = ProductIdentifierService(db)
        stmt = (
            select(Product).options(selectinload(Product.barcodes))
            .where(Product.id == P1).execution_options(populate_existing=True)
        )
        product = (await db.execute(stmt)).scalar_one()

        await service.replace_barcodes(product, [
            BarcodeInfo("KEEP", BarcodeType.CODE128, "Pack"),
            BarcodeInfo("4600000000001", BarcodeType.EAN13),
        ])
        await db.flush()

        assert sorted(await service.get_all_barcodes(P1)) == ["4600000000001", "KEEP"]
        keep = next(b for b in product.barcodes if b.barcode == "KEEP")
        assert keep.pack_name == "Pack"
