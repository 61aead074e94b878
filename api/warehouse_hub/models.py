from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field, AliasChoices


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    article: Optional[str] = None
    sku: Optional[str] = None
    barcode: Optional[str] = None
    price: float = 0.0
    stock: float = 0.0
    image_url: Optional[str] = None
    requires_marking: bool = False
    cell_address: Optional[str] = None
    barcodes: List[str] = Field(default_factory=list)


class ReconcileIn(BaseModel):
    product_ids: List[str] = Field(validation_alias=AliasChoices("product_ids", "productIds"))
    store_id: Optional[str] = Field(None, validation_alias=AliasChoices("store_id", "storeId"))


class StoreSettingIn(BaseModel):
    store_id: Optional[str] = Field(None, validation_alias=AliasChoices("store_id", "storeId"))


# ---------------------------------------------------------------- packing --

class TaskItemIn(BaseModel):
    product_id: str = Field(validation_alias=AliasChoices("product_id", "productId"))
    quantity: int = Field(1, gt=0)


class CreateTaskIn(BaseModel):
    name: Optional[str] = None
    items: List[TaskItemIn] = Field(default_factory=list)


class PackingScanIn(BaseModel):
    barcode: str = ""
    box_id: Optional[int] = Field(None, validation_alias=AliasChoices("box_id", "boxId"))
    # Chestny Znak code
    marking_code: Optional[str] = Field(
        None, validation_alias=AliasChoices("marking_code", "markingCode", "chestnyZnak", "chestny_znak")
    )


class CompleteTaskIn(BaseModel):
    create_shipment: bool = Field(True, validation_alias=AliasChoices("create_shipment", "createShipment"))


# -------------------------------------------------------------- receiving --

class CreateSessionIn(BaseModel):
    purchase_order_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("purchase_order_id", "purchaseOrderId")
    )


class ReceivingScanIn(BaseModel):
    barcode: str
    quantity: float = Field(1.0, gt=0)


class ReceivingItemPatch(BaseModel):
    received_qty: Optional[float] = None
    defect_qty: Optional[float] = None


class DefectIn(BaseModel):
    defect_qty: float = 0.0


class ReceivingItemIn(BaseModel):
    product_id: str = Field(validation_alias=AliasChoices("product_id", "productId"))
    quantity: float = Field(1.0, gt=0)
    is_extra: bool = Field(True, validation_alias=AliasChoices("is_extra", "isExtra"))
