"""
Tests for the rack walking order
"""

import math

import pytest

from warehouse_hub.services.address import ParsedAddress
from warehouse_hub.services.route_order import (
    DEFAULT_ROUTE_ORDER, RACK_WALK_ORDER, UNKNOWN_RACK_OFFSET, RouteOrderIndex
)


class TestRouteOrderIndex:
    """Test suite for RouteOrderIndex"""

    def test_walk_order_covers_all_racks_once(self):
        """Test that the default walk lists racks 1..52 exactly once"""
        assert len(RACK_WALK_ORDER) == 52
        assert sorted(RACK_WALK_ORDER) == list(range(1, 53))
        assert len(DEFAULT_ROUTE_ORDER) == 52

    def test_racks_sort_by_walk_position(self):
        """Test that racks 41, 1, 52 sort as 41, 52, 1"""
        racks = [41, 1, 52]

        ordered = sorted(racks, key=DEFAULT_ROUTE_ORDER.rank)

        assert ordered == [41, 52, 1]

    def test_unknown_rack_after_known_before_rackless(self):
        """Test that rack 99 ranks after every known rack and before a missing rack"""
        rank_99 = DEFAULT_ROUTE_ORDER.rank(99)

        assert rank_99 == UNKNOWN_RACK_OFFSET + 99
        assert all(DEFAULT_ROUTE_ORDER.rank(r) < rank_99 for r in RACK_WALK_ORDER)
        assert rank_99 < DEFAULT_ROUTE_ORDER.rank(None)
        assert DEFAULT_ROUTE_ORDER.rank(None) == math.inf

    def test_sort_key_shelf_then_cell(self):
        """Test in-rack ordering by shelf, missing shelf last, then cell case-insensitively"""
        addresses = [
            ParsedAddress(41, None, "A"),
            ParsedAddress(41, 2, "b"),
            ParsedAddress(41, 2, "A"),
            ParsedAddress(41, 1, "Z"),
        ]

        ordered = sorted(addresses, key=DEFAULT_ROUTE_ORDER.sort_key)

        assert ordered == [
            ParsedAddress(41, 1, "Z"),
            ParsedAddress(41, 2, "A"),
            ParsedAddress(41, 2, "b"),
            ParsedAddress(41, None, "A"),
        ]

    def test_duplicate_rack_rejected(self):
        """Test that a walk listing a rack twice is rejected"""
        with pytest.raises(ValueError, match="appears twice"):
            RouteOrderIndex([1, 2, 1])

    def test_custom_order(self):
        """Test membership and ranks of a custom walk"""
        index = RouteOrderIndex([3, 1, 2])

        assert 3 in index
        assert 4 not in index
        assert sorted([1, 2, 3], key=index.rank) == [3, 1, 2]
