# warehouse_hub/services/__init__.py
"""
Business logic services for Warehouse Hub.
"""
from warehouse_hub.services.identifiers import ProductIdentifierService
from warehouse_hub.services.catalog_sync import CatalogSyncService
from warehouse_hub.services.packing import PackingService
from warehouse_hub.services.receiving import ReceivingService
from warehouse_hub.services.route_sheet import RouteSheetService
from warehouse_hub.services.slots import SlotReconciliationService

__all__ = [
    "ProductIdentifierService",
    "CatalogSyncService",
    "PackingService",
    "ReceivingService",
    "RouteSheetService",
    "SlotReconciliationService",
]
