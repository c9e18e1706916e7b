from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from returnflow.api.deps import OrderGateway, get_db, get_order_gateway
from returnflow.core.config import settings
from returnflow.core.rate_limiter import limiter
from returnflow.models.return_case import ReturnStatus, ReturnType
from returnflow.schemas.refund import RefundResponse, ReturnWorkflowResponse
from returnflow.schemas.return_case import (
    ReturnApprove,
    ReturnCaseCreate,
    ReturnCaseResponse,
    ReturnCaseUpdate,
    ReturnProcess,
    ReturnReject,
    ReturnStatistics,
)
from returnflow.services.refund_allocator import RefundAllocator
from returnflow.services.return_case_service import ReturnCaseService
from returnflow.utils.response import paginated_response, success

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
@router.post("/", status_code=status.HTTP_201_CREATED, include_in_schema=False)
@limiter.limit(settings.MUTATION_RATE_LIMIT)
def open_return(
    request: Request,
    payload: ReturnCaseCreate,
    db: Session = Depends(get_db),
    gateway: OrderGateway = Depends(get_order_gateway),
):
    """Open a return for units of a completed order."""
    case = ReturnCaseService.open(db, gateway, payload)
    message = "Return created"
    if case.degraded_barcodes:
        message = "Return created from placeholder barcodes"
    return success(data=ReturnCaseResponse.from_case(case), message=message)


@router.get("")
@router.get("/", include_in_schema=False)
def list_returns(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[ReturnStatus] = None,
    order_id: Optional[int] = Query(None, ge=1),
    return_type: Optional[ReturnType] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    store_id: Optional[int] = Query(None, ge=1),
    customer_id: Optional[int] = Query(None, ge=1),
    search: Optional[str] = Query(None, max_length=100),
    sort_by: str = Query("created_at", pattern="^(created_at|return_number|status|total_return_value|total_refund_amount)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
):
    cases, total = ReturnCaseService.list(
        db,
        status=status,
        order_id=order_id,
        return_type=return_type,
        from_date=from_date,
        to_date=to_date,
        store_id=store_id,
        customer_id=customer_id,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return paginated_response(
        [ReturnCaseResponse.from_case(case) for case in cases],
        total=total,
        page=page,
        limit=limit,
        message="Returns retrieved",
    )


@router.get("/statistics")
def return_statistics(
    currency: Optional[str] = Query(None, min_length=3, max_length=3),
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    store_id: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
):
    stats = ReturnCaseService.statistics(
        db,
        currency.upper() if currency else None,
        from_date=from_date,
        to_date=to_date,
        store_id=store_id,
    )
    return success(data=ReturnStatistics(**stats), message="Return statistics retrieved")


@router.get("/{return_id}")
def get_return(return_id: int, db: Session = Depends(get_db)):
    case = ReturnCaseService.get(db, return_id)
    return success(data=ReturnCaseResponse.from_case(case), message="Return retrieved")


@router.get("/{return_id}/workflow")
def get_return_workflow(return_id: int, db: Session = Depends(get_db)):
    """Case detail with its refunds and what is left to pay out."""
    view = RefundAllocator.workflow(db, return_id)
    data = ReturnWorkflowResponse(
        return_case=ReturnCaseResponse.from_case(view["case"]),
        refunds=[RefundResponse.from_record(record) for record in view["refunds"]],
        total_refunded=view["total_refunded"].to_decimal(),
        remaining_amount=view["remaining"].to_decimal(),
        can_create_refund=view["can_create_refund"],
    )
    return success(data=data, message="Return workflow retrieved")


@router.patch("/{return_id}")
@limiter.limit(settings.MUTATION_RATE_LIMIT)
def update_return(
    request: Request,
    return_id: int,
    payload: ReturnCaseUpdate,
    db: Session = Depends(get_db),
):
    """Record the quality check result or edit internal notes."""
    case = ReturnCaseService.update(db, return_id, payload)
    return success(data=ReturnCaseResponse.from_case(case), message="Return updated")


@router.post("/{return_id}/approve")
@limiter.limit(settings.MUTATION_RATE_LIMIT)
def approve_return(
    request: Request,
    return_id: int,
    payload: ReturnApprove = ReturnApprove(),
    db: Session = Depends(get_db),
    gateway: OrderGateway = Depends(get_order_gateway),
):
    case = ReturnCaseService.approve(db, return_id, payload, gateway=gateway)
    return success(data=ReturnCaseResponse.from_case(case), message="Return approved")


@router.post("/{return_id}/reject")
@limiter.limit(settings.MUTATION_RATE_LIMIT)
def reject_return(
    request: Request,
    return_id: int,
    payload: ReturnReject,
    db: Session = Depends(get_db),
):
    case = ReturnCaseService.reject(db, return_id, payload.rejection_reason)
    return success(data=ReturnCaseResponse.from_case(case), message="Return rejected")


@router.post("/{return_id}/process")
@limiter.limit(settings.MUTATION_RATE_LIMIT)
def process_return(
    request: Request,
    return_id: int,
    payload: ReturnProcess = ReturnProcess(),
    db: Session = Depends(get_db),
):
    """Process an approved return; restores stock unless told not to."""
    case = ReturnCaseService.process(db, return_id, restore_inventory=payload.restore_inventory)
    message = "Return processed"
    if case.inventory_warnings:
        message = "Return processed with inventory warnings"
    return success(data=ReturnCaseResponse.from_case(case), message=message)


@router.post("/{return_id}/complete")
@limiter.limit(settings.MUTATION_RATE_LIMIT)
def complete_return(request: Request, return_id: int, db: Session = Depends(get_db)):
    case = ReturnCaseService.complete(db, return_id)
    return success(data=ReturnCaseResponse.from_case(case), message="Return completed")
