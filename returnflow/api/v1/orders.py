from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from returnflow.api.deps import OrderGateway, get_db, get_order_gateway
from returnflow.services.barcode_ledger import BarcodeLedger
from returnflow.utils.response import success

router = APIRouter()


@router.get("/{order_id}/return-eligible-items")
def get_return_eligible_items(
    order_id: int,
    db: Session = Depends(get_db),
    gateway: OrderGateway = Depends(get_order_gateway),
):
    """Per-item ordered / returned / available counts with unit barcodes."""
    gateway.load_order(db, order_id)
    order = BarcodeLedger.ensure_barcodes_locked(db, order_id)
    items = BarcodeLedger.eligible_items(db, order)
    return success(
        data={
            "order_id": order.id,
            "order_number": order.order_number,
            "status": order.status.value,
            "items": items,
        },
        message="Eligible items retrieved",
    )


@router.get("/{order_id}/returns/check-barcode")
def check_barcode(
    order_id: int,
    barcode: str = Query(..., min_length=1, max_length=120),
    db: Session = Depends(get_db),
    gateway: OrderGateway = Depends(get_order_gateway),
):
    gateway.load_order(db, order_id)
    order = BarcodeLedger.ensure_barcodes_locked(db, order_id)
    result = BarcodeLedger.check_barcode(db, order, barcode.strip())
    return success(data=result, message="Barcode checked")
