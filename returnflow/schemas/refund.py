from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from returnflow.models.refund import RefundMethod, RefundRecord, RefundStatus
from returnflow.schemas.common import Amount, clean_text
from returnflow.schemas.return_case import ReturnCaseResponse


class RefundAmounts(BaseModel):
    """Per-instrument split in major units. Sign is checked by the allocator."""
    cash: Decimal = Decimal("0")
    card: Decimal = Decimal("0")
    bkash: Decimal = Decimal("0")
    nagad: Decimal = Decimal("0")

    model_config = {"extra": "forbid"}

    def by_method(self) -> Dict[RefundMethod, Decimal]:
        return {
            RefundMethod.CASH: self.cash,
            RefundMethod.CARD: self.card,
            RefundMethod.BKASH: self.bkash,
            RefundMethod.NAGAD: self.nagad,
        }


class RefundCreate(BaseModel):
    return_id: int = Field(..., gt=0)
    amounts: RefundAmounts = RefundAmounts()
    # Banknote face value -> count; overrides amounts.cash when it adds up to more than zero
    denominations: Optional[Dict[int, int]] = None
    settle: bool = True
    transaction_reference: Optional[str] = Field(default=None, max_length=120)
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        return clean_text(value, 500)


class RefundComplete(BaseModel):
    transaction_reference: Optional[str] = Field(default=None, max_length=120)


class RefundResponse(BaseModel):
    id: int
    return_case_id: int
    exchange_id: Optional[int] = None
    amount: Amount
    currency: str
    method: RefundMethod
    status: RefundStatus
    transaction_reference: Optional[str] = None
    denominations: Optional[Dict[str, int]] = None
    created_at: datetime
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: RefundRecord) -> "RefundResponse":
        return cls(
            id=record.id,
            return_case_id=record.return_case_id,
            exchange_id=record.exchange_id,
            amount=record.money.to_decimal(),
            currency=record.currency,
            method=record.method,
            status=record.status,
            transaction_reference=record.transaction_reference,
            denominations=record.denominations,
            created_at=record.created_at,
            processed_at=record.processed_at,
            completed_at=record.completed_at,
        )


class RefundAllocationResponse(BaseModel):
    return_case_id: int
    status: str
    remaining: Amount
    refunds: List[RefundResponse]


class ReturnWorkflowResponse(BaseModel):
    return_case: ReturnCaseResponse = Field(..., serialization_alias="return")
    refunds: List[RefundResponse]
    total_refunded: Amount
    remaining_amount: Amount
    can_create_refund: bool
