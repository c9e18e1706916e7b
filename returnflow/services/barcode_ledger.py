from datetime import datetime
from typing import Dict, Iterable, List, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from returnflow.core.exceptions import AlreadyReturnedError, NotFoundError, OverReturnError, ValidationError
from returnflow.db.locks import order_guard
from returnflow.models.barcode import UnitBarcode
from returnflow.models.order import Order, OrderItem
from returnflow.schemas.order import BarcodeCheck, EligibleBarcode, EligibleItem

logger = structlog.get_logger()


def placeholder_code(order: Order, item: OrderItem, index: int) -> str:
    return f"{order.order_number}-{item.product_id}-{index}"


class BarcodeLedger:
    """Authoritative per-unit record of which order units have been returned."""

    @staticmethod
    def register_barcodes(item: OrderItem, codes: Iterable[str]) -> None:
        """Attach real per-unit barcodes supplied by the order subsystem."""
        codes = [code for code in codes if code]
        if len(codes) > item.quantity:
            raise ValidationError(
                f"Order item {item.id} has {len(codes)} barcodes for {item.quantity} units",
                order_item_id=item.id,
            )
        for code in codes:
            item.barcodes.append(UnitBarcode(code=code, synthetic=False))

    @staticmethod
    def ensure_barcodes(db: Session, order: Order) -> int:
        """
        Give every unit of the order a ledger entry. Caller holds the order guard.

        Units without a real barcode get a placeholder
        ``{order_number}-{product_id}-{index}`` flagged as synthetic.
        Counts come from the database, not from collections this session
        may have loaded before another request added placeholders.
        Returns the number of placeholders created.
        """
        db.flush()
        rows = (
            db.query(UnitBarcode.order_item_id, UnitBarcode.code)
            .join(OrderItem, UnitBarcode.order_item_id == OrderItem.id)
            .filter(OrderItem.order_id == order.id)
            .all()
        )
        existing = {code for _, code in rows}
        per_item: Dict[int, int] = {}
        for order_item_id, _ in rows:
            per_item[order_item_id] = per_item.get(order_item_id, 0) + 1

        created = 0
        for item in order.items:
            have = per_item.get(item.id, 0)
            index = 0
            while have < item.quantity:
                index += 1
                code = placeholder_code(order, item, index)
                if code in existing:
                    continue
                db.add(UnitBarcode(order_item_id=item.id, code=code, synthetic=True))
                existing.add(code)
                have += 1
                created += 1
        if created:
            db.flush()
            for item in order.items:
                db.expire(item, ["barcodes"])
            logger.warning(
                "synthetic_barcodes_generated",
                order_id=order.id,
                order_number=order.order_number,
                count=created,
            )
        return created

    @staticmethod
    def ensure_barcodes_locked(db: Session, order_id: int) -> Order:
        """Run ensure_barcodes under the order guard and commit."""
        with order_guard(db, order_id) as order:
            BarcodeLedger.ensure_barcodes(db, order)
            db.commit()
        db.refresh(order)
        return order


    @staticmethod
    def resolve(db: Session, order_id: int, code: str) -> OrderItem:
        barcode = (
            db.query(UnitBarcode)
            .join(OrderItem, UnitBarcode.order_item_id == OrderItem.id)
            .filter(UnitBarcode.code == code, OrderItem.order_id == order_id)
            .first()
        )
        if not barcode:
            raise NotFoundError("barcode not in order", barcode=code, order_id=order_id)
        return barcode.order_item

    @staticmethod
    def mark_returned(db: Session, code: str, return_case_id: Optional[int] = None) -> None:
        """
        Flip one unit to returned.

        A conditional UPDATE, so among concurrent callers exactly one sees
        a row change. Everyone else, including a retry of the winner, gets
        AlreadyReturnedError.
        """
        updated = (
            db.query(UnitBarcode)
            .filter(UnitBarcode.code == code, UnitBarcode.returned == False)  # noqa: E712
            .update(
                {
                    UnitBarcode.returned: True,
                    UnitBarcode.returned_at: datetime.utcnow(),
                    UnitBarcode.return_case_id: return_case_id,
                },
                synchronize_session="fetch",
            )
        )
        if updated == 1:
            return

        exists = db.query(UnitBarcode.id).filter(UnitBarcode.code == code).first()
        if not exists:
            raise NotFoundError("barcode not found", barcode=code)
        raise AlreadyReturnedError(code)

    @staticmethod
    def returned_count(db: Session, order_item_id: int) -> int:
        return (
            db.query(func.count(UnitBarcode.id))
            .filter(UnitBarcode.order_item_id == order_item_id, UnitBarcode.returned == True)  # noqa: E712
            .scalar()
            or 0
        )

    @staticmethod
    def eligible_count(db: Session, order_item_id: int) -> int:
        item = db.query(OrderItem).filter(OrderItem.id == order_item_id).first()
        if not item:
            raise NotFoundError("Order item not found", order_item_id=order_item_id)
        return max(0, item.quantity - BarcodeLedger.returned_count(db, order_item_id))

    @staticmethod
    def check_available(db: Session, item: OrderItem, requested: int) -> int:
        available = BarcodeLedger.eligible_count(db, item.id)
        if requested > available:
            raise OverReturnError(requested, available, order_item_id=item.id)
        return available

    @staticmethod
    def select_units(
        db: Session,
        item: OrderItem,
        quantity: int,
        codes: Optional[List[str]] = None,
    ) -> List[UnitBarcode]:
        """
        Pick the units a return will consume.

        Explicit codes must belong to this item and be unreturned; without
        codes the lowest unreturned units are taken.
        """
        BarcodeLedger.check_available(db, item, quantity)

        if codes:
            if len(codes) != quantity:
                raise ValidationError(
                    f"{len(codes)} barcodes given for quantity {quantity}",
                    order_item_id=item.id,
                )
            units = []
            for code in codes:
                owner = BarcodeLedger.resolve(db, item.order_id, code)
                if owner.id != item.id:
                    raise ValidationError(
                        f"Barcode {code} belongs to a different order item",
                        barcode=code,
                        order_item_id=item.id,
                    )
                unit = db.query(UnitBarcode).filter(UnitBarcode.code == code).first()
                if unit.returned:
                    raise AlreadyReturnedError(code)
                units.append(unit)
            return units

        units = (
            db.query(UnitBarcode)
            .filter(UnitBarcode.order_item_id == item.id, UnitBarcode.returned == False)  # noqa: E712
            .order_by(UnitBarcode.id)
            .limit(quantity)
            .all()
        )
        if len(units) < quantity:
            raise OverReturnError(quantity, len(units), order_item_id=item.id)
        return units

    @staticmethod
    def eligible_items(db: Session, order: Order) -> List[EligibleItem]:
        report = []
        for item in order.items:
            returned = sum(1 for barcode in item.barcodes if barcode.returned)
            report.append(
                EligibleItem(
                    order_item_id=item.id,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    quantity_ordered=item.quantity,
                    quantity_returned=returned,
                    quantity_available=max(0, item.quantity - returned),
                    barcodes=[
                        EligibleBarcode(barcode=b.code, is_returned=b.returned, synthetic=b.synthetic)
                        for b in item.barcodes
                    ],
                )
            )
        return report

    @staticmethod
    def check_barcode(db: Session, order: Order, code: str) -> BarcodeCheck:
        try:
            item = BarcodeLedger.resolve(db, order.id, code)
        except NotFoundError:
            return BarcodeCheck(found=False, can_return=False, reason="Barcode not found in this order")

        unit = db.query(UnitBarcode).filter(UnitBarcode.code == code).first()
        return BarcodeCheck(
            found=True,
            can_return=not unit.returned,
            order_item_id=item.id,
            product_name=item.product_name,
            reason="Already returned" if unit.returned else None,
        )
