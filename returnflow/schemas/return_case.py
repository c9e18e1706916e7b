from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from returnflow.core.money import Money
from returnflow.models.return_case import ReturnCase, ReturnStatus, ReturnType
from returnflow.schemas.common import Amount, clean_text


class ReturnItemCreate(BaseModel):
    order_item_id: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0)
    reason: Optional[str] = None
    barcodes: Optional[List[str]] = None

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, value: Optional[str]) -> Optional[str]:
        return clean_text(value, 500)

    @field_validator("barcodes")
    @classmethod
    def strip_barcodes(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return value
        codes = [code.strip() for code in value if code and code.strip()]
        if len(set(codes)) != len(codes):
            raise ValueError("Duplicate barcodes in request")
        return codes


class ReturnCaseCreate(BaseModel):
    order_id: int = Field(..., gt=0)
    return_reason: str = ""
    return_type: ReturnType
    items: List[ReturnItemCreate] = []
    customer_notes: Optional[str] = None

    @field_validator("return_reason")
    @classmethod
    def validate_return_reason(cls, value: str) -> str:
        return clean_text(value, 1000) or ""

    @field_validator("customer_notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        return clean_text(value, 1000)


class ReturnCaseUpdate(BaseModel):
    quality_check_passed: Optional[bool] = None
    quality_check_notes: Optional[str] = None
    internal_notes: Optional[str] = None

    @field_validator("quality_check_notes", "internal_notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        return clean_text(value, 1000)


class ReturnApprove(BaseModel):
    total_refund_amount: Optional[Decimal] = None
    processing_fee: Optional[Decimal] = None
    internal_notes: Optional[str] = None

    @field_validator("internal_notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        return clean_text(value, 1000)


class ReturnReject(BaseModel):
    rejection_reason: str = ""

    @field_validator("rejection_reason")
    @classmethod
    def validate_reason(cls, value: str) -> str:
        return clean_text(value, 1000) or ""


class ReturnProcess(BaseModel):
    restore_inventory: bool = True


class ReturnItemResponse(BaseModel):
    order_item_id: int
    product_id: int
    product_name: str
    quantity_returned: int
    unit_price: Amount
    total_price: Amount
    reason: Optional[str] = None
    barcodes: List[str]


class ReturnStatusHistoryResponse(BaseModel):
    old_status: Optional[str]
    new_status: str
    notes: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class ReturnCaseResponse(BaseModel):
    id: int
    return_number: str
    order_id: int
    status: ReturnStatus
    return_type: ReturnType
    return_reason: str
    currency: str
    total_return_value: Amount
    total_refund_amount: Amount
    processing_fee: Amount
    net_refund_amount: Amount
    quality_check_passed: Optional[bool] = None
    quality_check_notes: Optional[str] = None
    customer_notes: Optional[str] = None
    internal_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    degraded_barcodes: bool
    inventory_restored_at: Optional[datetime] = None
    warnings: List[str]
    items: List[ReturnItemResponse]
    status_history: List[ReturnStatusHistoryResponse]
    created_at: datetime
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    @classmethod
    def from_case(cls, case: ReturnCase) -> "ReturnCaseResponse":
        codes_by_item: dict[int, list[str]] = {}
        for barcode in case.barcodes:
            codes_by_item.setdefault(barcode.order_item_id, []).append(barcode.code)

        items = []
        for item in case.items:
            unit = Money(item.unit_price, case.currency)
            items.append(
                ReturnItemResponse(
                    order_item_id=item.order_item_id,
                    product_id=item.order_item.product_id,
                    product_name=item.order_item.product_name,
                    quantity_returned=item.quantity_returned,
                    unit_price=unit.to_decimal(),
                    total_price=(unit * item.quantity_returned).to_decimal(),
                    reason=item.reason,
                    barcodes=codes_by_item.get(item.order_item_id, []),
                )
            )

        return cls(
            id=case.id,
            return_number=case.return_number,
            order_id=case.order_id,
            status=case.status,
            return_type=case.return_type,
            return_reason=case.return_reason,
            currency=case.currency,
            total_return_value=case.return_value.to_decimal(),
            total_refund_amount=case.refund_total.to_decimal(),
            processing_fee=case.fee.to_decimal(),
            net_refund_amount=case.net_refund.to_decimal(),
            quality_check_passed=case.quality_check_passed,
            quality_check_notes=case.quality_check_notes,
            customer_notes=case.customer_notes,
            internal_notes=case.internal_notes,
            rejection_reason=case.rejection_reason,
            degraded_barcodes=case.degraded_barcodes,
            inventory_restored_at=case.inventory_restored_at,
            warnings=list(case.inventory_warnings or []),
            items=items,
            status_history=[ReturnStatusHistoryResponse.model_validate(h) for h in case.status_history],
            created_at=case.created_at,
            approved_at=case.approved_at,
            rejected_at=case.rejected_at,
            processed_at=case.processed_at,
            completed_at=case.completed_at,
            refunded_at=case.refunded_at,
        )


class ReturnTypeCount(BaseModel):
    return_type: ReturnType
    count: int


class ReturnStatistics(BaseModel):
    currency: str
    total_returns: int
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    processed: int = 0
    completed: int = 0
    refunded: int = 0
    total_return_value: Amount
    total_refund_amount: Amount
    total_processing_fees: Amount
    total_net_refund: Amount
    by_reason: List[ReturnTypeCount]
