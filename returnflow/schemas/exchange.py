from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from returnflow.core.money import Money
from returnflow.models.exchange import ExchangeAttempt, ExchangeRecord, ExchangeStatus
from returnflow.models.return_case import ReturnType
from returnflow.schemas.common import Amount, clean_text
from returnflow.schemas.refund import RefundAmounts, RefundResponse
from returnflow.schemas.return_case import ReturnItemCreate


class ReplacementItem(BaseModel):
    product_id: int = Field(..., gt=0)
    product_name: str = Field(..., min_length=1, max_length=200)
    batch_id: Optional[int] = None
    quantity: int = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)


class ExchangeCreate(BaseModel):
    order_id: int = Field(..., gt=0)
    return_type: ReturnType = ReturnType.UNWANTED
    return_reason: str = ""
    items: List[ReturnItemCreate] = []
    replacement_items: List[ReplacementItem] = Field(..., min_length=1)
    restore_inventory: bool = True
    customer_notes: Optional[str] = None

    @field_validator("return_reason")
    @classmethod
    def validate_return_reason(cls, value: str) -> str:
        return clean_text(value, 1000) or ""

    @field_validator("customer_notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        return clean_text(value, 1000)


class ExchangeSettle(BaseModel):
    amounts: RefundAmounts = RefundAmounts()
    denominations: Optional[Dict[int, int]] = None


class ExchangeAttemptResponse(BaseModel):
    id: int
    order_id: int
    status: ExchangeStatus
    return_case_id: Optional[int] = None
    refund_id: Optional[int] = None
    new_order_id: Optional[int] = None
    exchange_id: Optional[int] = None
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_attempt(cls, attempt: ExchangeAttempt) -> "ExchangeAttemptResponse":
        return cls(
            id=attempt.id,
            order_id=attempt.order_id,
            status=attempt.status,
            return_case_id=attempt.return_case_id,
            refund_id=attempt.refund_id,
            new_order_id=attempt.new_order_id,
            exchange_id=attempt.record.id if attempt.record else None,
            last_error=attempt.last_error,
            created_at=attempt.created_at,
            updated_at=attempt.updated_at,
        )


class ExchangeResponse(BaseModel):
    id: int
    attempt_id: int
    return_case_id: int
    new_order_id: int
    currency: str
    refund_amount: Amount
    new_order_total: Amount
    net_amount: Amount
    owed_to_customer: Amount
    owed_by_customer: Amount
    surplus_remaining: Amount
    payouts: List[RefundResponse]
    created_at: datetime

    @classmethod
    def from_record(cls, record: ExchangeRecord) -> "ExchangeResponse":
        net = record.net
        return cls(
            id=record.id,
            attempt_id=record.attempt_id,
            return_case_id=record.return_case_id,
            new_order_id=record.new_order_id,
            currency=record.currency,
            refund_amount=Money(record.refund_amount, record.currency).to_decimal(),
            new_order_total=Money(record.new_order_total, record.currency).to_decimal(),
            net_amount=net.to_decimal(),
            owed_to_customer=net.clamp_zero().to_decimal(),
            owed_by_customer=(-net).clamp_zero().to_decimal(),
            surplus_remaining=record.surplus_remaining.to_decimal(),
            payouts=[RefundResponse.from_record(p) for p in record.payouts],
            created_at=record.created_at,
        )
