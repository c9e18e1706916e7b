from typing import Any, List, Optional

from pydantic import BaseModel, Field


class RemoteOrderItem(BaseModel):
    """Line item as served by the order subsystem's GET /orders/{id}."""
    id: int
    product_id: int
    product_name: str
    quantity: int = Field(..., gt=0)
    unit_price: Any
    batch_id: Optional[int] = None
    product_batch_id: Optional[int] = None
    barcodes: List[str] = []

    model_config = {"extra": "ignore"}


class RemoteOrder(BaseModel):
    id: int
    order_number: str
    status: str = "completed"
    currency: Optional[str] = None
    customer_id: Optional[int] = None
    store_id: Optional[int] = None
    total_amount: Any = None
    paid_amount: Any = 0
    outstanding_amount: Any = None
    items: List[RemoteOrderItem] = []

    model_config = {"extra": "ignore"}


class EligibleBarcode(BaseModel):
    barcode: str
    is_returned: bool
    synthetic: bool


class EligibleItem(BaseModel):
    order_item_id: int
    product_id: int
    product_name: str
    quantity_ordered: int
    quantity_returned: int
    quantity_available: int
    barcodes: List[EligibleBarcode]


class BarcodeCheck(BaseModel):
    found: bool
    can_return: bool
    order_item_id: Optional[int] = None
    product_name: Optional[str] = None
    reason: Optional[str] = None
