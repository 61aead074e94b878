"""
Tests for stock report normalization and merge
"""

from warehouse_hub.services.stock_merge import (
    StockRecord, extract_entity_id, merge_stock, normalize_stock_row
)

from conftest import P1, P2, product_href


class TestNormalizeStockRow:
    """Test suite for the stock row adapter"""

    def test_assortment_meta_href(self):
        """Test id, barcodes and codes from an expanded stock/all row"""
        rec = normalize_stock_row({
            "meta": {"href": product_href(P1) + "?expand=supplier"},
            "stock": 4,
            "article": " ART-1 ",
            "code": "00042",
            "barcodes": [{"ean13": "4600000000001"}, {"code128": "OZN123"}],
        })

        assert rec.product_id == P1
        assert rec.barcodes == ("4600000000001", "OZN123")
        assert rec.article == "ART-1"
        assert rec.sku == "00042"
        assert rec.quantity == 4.0

    def test_bystore_shape(self):
        """Test the normalized bystore fallback row"""
        rec = normalize_stock_row({
            "assortment": {"meta": {"href": product_href(P2, "variant")}},
            "stock": 2,
            "barcodes": ["2000000000015"],
        })

        assert rec.product_id == P2
        assert rec.barcodes == ("2000000000015",)

    def test_unknown_href(self):
        """Test that non-entity hrefs give no id"""
        assert extract_entity_id("https://example.com/whatever") is None
        assert extract_entity_id(None) is None


class TestMergeStock:
    """Test suite for StockIndex"""

    def test_duplicate_rows_take_max_not_sum(self):
        """Test that the same assortment twice keeps the larger quantity"""
        index = merge_stock([
            StockRecord(P1, ("111",), quantity=5),
            StockRecord(P1, ("111",), quantity=12),
        ])

        assert index.by_id[P1] == 12
        assert index.by_barcode["111"] == 12

    def test_resolution_order(self):
        """Test id, then barcode, then article, then SKU"""
        index = merge_stock([
            StockRecord(None, ("B1",), quantity=3),
            StockRecord(None, (), article="ART", quantity=7),
            StockRecord(None, (), sku="SKU", quantity=9),
        ])

        assert index.resolve("unknown", ["nope", "B1"], "ART", "SKU") == 3
        assert index.resolve(None, [], "ART", "SKU") == 7
        assert index.resolve(None, [], None, "SKU") == 9
        assert index.resolve(None, [], None, None) == 0

    def test_pack_barcode_resolves(self):
        """Test that a pack barcode listed on the product finds the stock row"""
        index = merge_stock([{"barcodes": [{"code128": "OZN777"}], "stock": 6}])

        assert index.resolve(P1, ["4600000000001", "OZN777"]) == 6

    def test_zero_rows_ignored(self):
        """Test that zero quantities do not shadow later keys"""
        index = merge_stock([
            StockRecord(P1, (), quantity=0),
            StockRecord(None, ("B1",), quantity=2),
        ])

        assert index.resolve(P1, ["B1"]) == 2
