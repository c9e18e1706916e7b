from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from returnflow.api.deps import get_db
from returnflow.core.config import settings
from returnflow.core.rate_limiter import limiter
from returnflow.models.refund import RefundMethod, RefundStatus
from returnflow.schemas.refund import RefundAllocationResponse, RefundComplete, RefundCreate, RefundResponse
from returnflow.services.refund_allocator import RefundAllocator
from returnflow.services.return_case_service import ReturnCaseService
from returnflow.utils.response import success

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
@router.post("/", status_code=status.HTTP_201_CREATED, include_in_schema=False)
@limiter.limit(settings.MUTATION_RATE_LIMIT)
def create_refund(request: Request, payload: RefundCreate, db: Session = Depends(get_db)):
    """Split a completed return's refund across cash, card, bKash and Nagad."""
    records = RefundAllocator.allocate(db, payload)
    case = ReturnCaseService.get(db, payload.return_id)
    data = RefundAllocationResponse(
        return_case_id=case.id,
        status=case.status.value,
        remaining=RefundAllocator.remaining(db, case).to_decimal(),
        refunds=[RefundResponse.from_record(record) for record in records],
    )
    return success(data=data, message="Refund recorded")


@router.get("")
@router.get("/", include_in_schema=False)
def list_refunds(
    return_id: Optional[int] = Query(None, ge=1),
    status: Optional[RefundStatus] = None,
    refund_method: Optional[RefundMethod] = None,
    db: Session = Depends(get_db),
):
    records = RefundAllocator.list_refunds(db, return_id, status=status, method=refund_method)
    return success(
        data=[RefundResponse.from_record(record) for record in records],
        message="Refunds retrieved",
    )


@router.post("/{refund_id}/process")
@limiter.limit(settings.MUTATION_RATE_LIMIT)
def process_refund(request: Request, refund_id: int, db: Session = Depends(get_db)):
    record = RefundAllocator.process_refund(db, refund_id)
    return success(data=RefundResponse.from_record(record), message="Refund processed")


@router.post("/{refund_id}/complete")
@limiter.limit(settings.MUTATION_RATE_LIMIT)
def complete_refund(
    request: Request,
    refund_id: int,
    payload: RefundComplete = RefundComplete(),
    db: Session = Depends(get_db),
):
    record = RefundAllocator.complete_refund(db, refund_id, payload.transaction_reference)
    return success(data=RefundResponse.from_record(record), message="Refund completed")
