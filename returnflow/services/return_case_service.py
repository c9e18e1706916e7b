import random
import string
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Set, Tuple

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session

from returnflow.core.config import settings
from returnflow.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from returnflow.core.money import Money
from returnflow.db.locks import order_guard
from returnflow.models.order import Order, OrderStatus
from returnflow.models.return_case import (
    ReturnCase,
    ReturnCaseItem,
    ReturnStatus,
    ReturnStatusHistory,
    ReturnType,
)
from returnflow.schemas.return_case import ReturnApprove, ReturnCaseCreate, ReturnCaseUpdate
from returnflow.services.barcode_ledger import BarcodeLedger
from returnflow.services.inventory_reconciler import InventoryReconciler
from returnflow.services.order_gateway import OrderGateway

logger = structlog.get_logger()

# action -> statuses it may start from
ALLOWED_SOURCES: Dict[str, Set[ReturnStatus]] = {
    "record quality check": {ReturnStatus.PENDING},
    "edit": {ReturnStatus.PENDING, ReturnStatus.APPROVED},
    "approve": {ReturnStatus.PENDING},
    "reject": {ReturnStatus.PENDING, ReturnStatus.APPROVED},
    "process": {ReturnStatus.APPROVED},
    "complete": {ReturnStatus.PROCESSED},
    "refund": {ReturnStatus.COMPLETED},
}

# Cases whose refund total already counts against what the customer paid
COMMITTED_STATUSES = {
    ReturnStatus.APPROVED,
    ReturnStatus.PROCESSED,
    ReturnStatus.COMPLETED,
    ReturnStatus.REFUNDED,
}

SORT_COLUMNS = {
    "created_at": ReturnCase.created_at,
    "return_number": ReturnCase.return_number,
    "status": ReturnCase.status,
    "total_return_value": ReturnCase.total_return_value,
    "total_refund_amount": ReturnCase.total_refund_amount,
}

_TIMESTAMP_FIELDS = {
    ReturnStatus.APPROVED: "approved_at",
    ReturnStatus.REJECTED: "rejected_at",
    ReturnStatus.PROCESSED: "processed_at",
    ReturnStatus.COMPLETED: "completed_at",
    ReturnStatus.REFUNDED: "refunded_at",
}


def ensure_allowed(case: ReturnCase, action: str) -> None:
    if case.status not in ALLOWED_SOURCES[action]:
        raise InvalidTransitionError(
            f"Cannot {action}: return is {case.status.value}",
            current_status=case.status.value,
        )


def set_status(case: ReturnCase, new_status: ReturnStatus, notes: Optional[str] = None) -> None:
    old_status = case.status
    case.status = new_status
    field = _TIMESTAMP_FIELDS.get(new_status)
    if field:
        setattr(case, field, datetime.utcnow())
    case.status_history.append(
        ReturnStatusHistory(
            old_status=old_status.value if old_status else None,
            new_status=new_status.value,
            notes=notes,
        )
    )
    logger.info(
        "return_status_changed",
        return_case_id=case.id,
        return_number=case.return_number,
        old_status=old_status.value if old_status else None,
        new_status=new_status.value,
    )


def generate_return_number(db: Session) -> str:
    """Generate a unique return number with bounded retries."""
    max_attempts = 10

    for _ in range(max_attempts):
        timestamp = datetime.now().strftime("%Y%m%d")
        random_part = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
        return_number = f"{settings.RETURN_NUMBER_PREFIX}-{timestamp}-{random_part}"

        existing = db.query(ReturnCase.id).filter(ReturnCase.return_number == return_number).first()
        if not existing:
            return return_number

    raise ValueError("Failed to generate unique return number")


class ReturnCaseService:

    @staticmethod
    def get(db: Session, case_id: int) -> ReturnCase:
        case = db.query(ReturnCase).filter(ReturnCase.id == case_id).first()
        if not case:
            raise NotFoundError("Return not found", return_id=case_id)
        return case

    @staticmethod
    def _locked(db: Session, case_id: int):
        case = ReturnCaseService.get(db, case_id)
        return case, order_guard(db, case.order_id)

    @staticmethod
    def open(db: Session, gateway: OrderGateway, data: ReturnCaseCreate) -> ReturnCase:
        """Open a pending return and consume the selected units in the ledger."""
        if not data.items:
            raise ValidationError("At least one item is required")
        if not data.return_reason.strip():
            raise ValidationError("Return reason is required")

        requested_ids = [item.order_item_id for item in data.items]
        if len(set(requested_ids)) != len(requested_ids):
            raise ValidationError("Each order item may appear only once per return")

        # Refresh the order snapshot before taking the lock (may be a network call)
        gateway.load_order(db, data.order_id)

        with order_guard(db, data.order_id) as order:
            if order.status != OrderStatus.COMPLETED:
                raise ValidationError("Only completed orders can be returned", order_id=order.id)

            BarcodeLedger.ensure_barcodes(db, order)
            items_by_id = {item.id: item for item in order.items}

            case = ReturnCase(
                return_number=generate_return_number(db),
                order_id=order.id,
                return_type=data.return_type,
                return_reason=data.return_reason,
                customer_notes=data.customer_notes,
                currency=order.currency,
                status=ReturnStatus.PENDING,
            )
            db.add(case)
            db.flush()

            total = Money.zero(order.currency)
            degraded = False
            for requested in data.items:
                item = items_by_id.get(requested.order_item_id)
                if not item:
                    raise NotFoundError(
                        "Order item not found in order",
                        order_item_id=requested.order_item_id,
                        order_id=order.id,
                    )
                units = BarcodeLedger.select_units(db, item, requested.quantity, requested.barcodes)
                for unit in units:
                    BarcodeLedger.mark_returned(db, unit.code, case.id)
                    degraded = degraded or unit.synthetic

                case.items.append(
                    ReturnCaseItem(
                        order_item_id=item.id,
                        quantity_returned=requested.quantity,
                        unit_price=item.unit_price,
                        reason=requested.reason or data.return_reason,
                    )
                )
                total = total + Money(item.unit_price, order.currency) * requested.quantity

            case.total_return_value = total.amount
            case.degraded_barcodes = degraded
            case.status_history.append(
                ReturnStatusHistory(old_status=None, new_status=ReturnStatus.PENDING.value, notes="Return opened")
            )
            db.commit()

        db.refresh(case)
        logger.info(
            "return_opened",
            return_case_id=case.id,
            return_number=case.return_number,
            order_id=case.order_id,
            total_return_value=str(case.return_value),
            degraded_barcodes=case.degraded_barcodes,
        )
        return case

    @staticmethod
    def update(db: Session, case_id: int, data: ReturnCaseUpdate) -> ReturnCase:
        """Record the quality check and/or internal notes. Status never changes here."""
        case, guard = ReturnCaseService._locked(db, case_id)
        with guard:
            db.refresh(case)
            if data.quality_check_passed is not None:
                ensure_allowed(case, "record quality check")
                case.quality_check_passed = data.quality_check_passed
                case.quality_check_notes = data.quality_check_notes
                logger.info(
                    "quality_check_recorded",
                    return_case_id=case.id,
                    passed=data.quality_check_passed,
                )
            elif data.quality_check_notes is not None:
                ensure_allowed(case, "record quality check")
                case.quality_check_notes = data.quality_check_notes

            if data.internal_notes is not None:
                ensure_allowed(case, "edit")
                case.internal_notes = data.internal_notes
            db.commit()
        db.refresh(case)
        return case

    @staticmethod
    def record_quality_check(db: Session, case_id: int, passed: bool, notes: Optional[str] = None) -> ReturnCase:
        return ReturnCaseService.update(
            db, case_id, ReturnCaseUpdate(quality_check_passed=passed, quality_check_notes=notes)
        )

    @staticmethod
    def approve(
        db: Session,
        case_id: int,
        data: ReturnApprove,
        gateway: Optional[OrderGateway] = None,
    ) -> ReturnCase:
        """
        Approve a pending case whose quality check passed.

        The refund total is the requested amount (default: full return
        value) capped at the return value and at what the customer paid
        on the order less net refunds already committed to other cases.
        The processing fee is kept beside it; the customer is paid the
        net refund, ``max(0, total - fee)``.
        """
        case = ReturnCaseService.get(db, case_id)
        if gateway is not None:
            # Latest paid amount from the order subsystem (may be a network call)
            gateway.load_order(db, case.order_id)

        with order_guard(db, case.order_id) as order:
            db.refresh(case)
            db.refresh(order)
            ensure_allowed(case, "approve")
            if case.quality_check_passed is not True:
                raise InvalidTransitionError(
                    "Cannot approve: quality check not passed",
                    current_status=case.status.value,
                )

            currency = case.currency
            if data.total_refund_amount is not None:
                requested = Money.from_major(data.total_refund_amount, currency)
            else:
                requested = case.return_value
            fee = Money.from_major(data.processing_fee, currency) if data.processing_fee is not None else Money.zero(currency)
            if requested.is_negative():
                raise ValidationError("Refund amount cannot be negative")
            if fee.is_negative():
                raise ValidationError("Processing fee cannot be negative")

            other_cases = (
                db.query(ReturnCase)
                .filter(
                    ReturnCase.order_id == order.id,
                    ReturnCase.id != case.id,
                    ReturnCase.status.in_(COMMITTED_STATUSES),
                )
                .all()
            )
            committed_elsewhere = Money.sum((other.net_refund for other in other_cases), currency)
            paid_available = (order.paid - committed_elsewhere).clamp_zero()
            cap = min(case.return_value, paid_available)
            refund = min(requested, cap)

            if refund < requested:
                logger.info(
                    "refund_amount_capped",
                    return_case_id=case.id,
                    requested=str(requested),
                    capped_to=str(refund),
                    paid_available=str(paid_available),
                )

            case.total_refund_amount = refund.amount
            case.processing_fee = fee.amount
            if fee > refund:
                logger.warning(
                    "processing_fee_exceeds_refund",
                    return_case_id=case.id,
                    processing_fee=str(fee),
                    refund_total=str(refund),
                )
            if data.internal_notes is not None:
                case.internal_notes = data.internal_notes
            set_status(case, ReturnStatus.APPROVED, f"Refund total {case.refund_total}, net {case.net_refund}")
            db.commit()
        db.refresh(case)
        return case

    @staticmethod
    def reject(db: Session, case_id: int, reason: str) -> ReturnCase:
        case, guard = ReturnCaseService._locked(db, case_id)
        with guard:
            db.refresh(case)
            ensure_allowed(case, "reject")
            if not (reason or "").strip():
                raise ValidationError("Rejection reason is required")
            case.rejection_reason = reason.strip()
            set_status(case, ReturnStatus.REJECTED, case.rejection_reason)
            db.commit()
        db.refresh(case)
        return case

    @staticmethod
    def process(db: Session, case_id: int, restore_inventory: bool = True) -> ReturnCase:
        """Move approved -> processed; stock credits commit with the transition."""
        case, guard = ReturnCaseService._locked(db, case_id)
        with guard:
            db.refresh(case)
            ensure_allowed(case, "process")
            warnings: List[str] = []
            if restore_inventory:
                warnings = InventoryReconciler.restore(db, case)
            note = "Processed"
            if warnings:
                note = f"Processed with {len(warnings)} inventory warning(s)"
            set_status(case, ReturnStatus.PROCESSED, note)
            db.commit()
        db.refresh(case)
        return case

    @staticmethod
    def complete(db: Session, case_id: int) -> ReturnCase:
        case, guard = ReturnCaseService._locked(db, case_id)
        with guard:
            db.refresh(case)
            ensure_allowed(case, "complete")
            set_status(case, ReturnStatus.COMPLETED, "Ready for refund")
            if case.net_refund.is_zero():
                set_status(case, ReturnStatus.REFUNDED, "Nothing to refund")
            db.commit()
        db.refresh(case)
        return case

    @staticmethod
    def _apply_order_filters(
        query,
        *,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        store_id: Optional[int] = None,
        customer_id: Optional[int] = None,
    ):
        if from_date is not None:
            query = query.filter(ReturnCase.created_at >= datetime.combine(from_date, time.min))
        if to_date is not None:
            query = query.filter(ReturnCase.created_at < datetime.combine(to_date + timedelta(days=1), time.min))
        if store_id is not None or customer_id is not None:
            query = query.join(Order, ReturnCase.order_id == Order.id)
            if store_id is not None:
                query = query.filter(Order.store_id == store_id)
            if customer_id is not None:
                query = query.filter(Order.customer_id == customer_id)
        return query

    @staticmethod
    def list(
        db: Session,
        *,
        status: Optional[ReturnStatus] = None,
        order_id: Optional[int] = None,
        return_type: Optional[ReturnType] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        store_id: Optional[int] = None,
        customer_id: Optional[int] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[ReturnCase], int]:
        query = db.query(ReturnCase)
        if status is not None:
            query = query.filter(ReturnCase.status == status)
        if order_id is not None:
            query = query.filter(ReturnCase.order_id == order_id)
        if return_type is not None:
            query = query.filter(ReturnCase.return_type == return_type)
        query = ReturnCaseService._apply_order_filters(
            query,
            from_date=from_date,
            to_date=to_date,
            store_id=store_id,
            customer_id=customer_id,
        )

        # Search by return number, order number or reason
        if search:
            search_term = f"%{search.strip()}%"
            matching_orders = db.query(Order.id).filter(Order.order_number.ilike(search_term))
            query = query.filter(
                or_(
                    ReturnCase.return_number.ilike(search_term),
                    ReturnCase.return_reason.ilike(search_term),
                    ReturnCase.order_id.in_(matching_orders),
                )
            )

        column = SORT_COLUMNS.get(sort_by)
        if column is None:
            raise ValidationError(f"Cannot sort returns by {sort_by!r}", sort_by=sort_by)
        ordering = column.asc() if sort_order == "asc" else column.desc()
        tie_break = ReturnCase.id.asc() if sort_order == "asc" else ReturnCase.id.desc()

        total = query.count()
        cases = (
            query.order_by(ordering, tie_break)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return cases, total

    @staticmethod
    def statistics(
        db: Session,
        currency: Optional[str] = None,
        *,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        store_id: Optional[int] = None,
    ) -> dict:
        currency = currency or settings.DEFAULT_CURRENCY
        cases = ReturnCaseService._apply_order_filters(
            db.query(ReturnCase).filter(ReturnCase.currency == currency),
            from_date=from_date,
            to_date=to_date,
            store_id=store_id,
        ).all()

        stats = {"currency": currency, "total_returns": len(cases)}
        for status in ReturnStatus:
            stats[status.value] = sum(1 for case in cases if case.status == status)
        stats["total_return_value"] = Money.sum((case.return_value for case in cases), currency).to_decimal()
        stats["total_refund_amount"] = Money.sum((case.refund_total for case in cases), currency).to_decimal()
        stats["total_processing_fees"] = Money.sum((case.fee for case in cases), currency).to_decimal()
        stats["total_net_refund"] = Money.sum((case.net_refund for case in cases), currency).to_decimal()

        by_type: Dict[ReturnType, int] = {}
        for case in cases:
            by_type[case.return_type] = by_type.get(case.return_type, 0) + 1
        stats["by_reason"] = [
            {"return_type": return_type, "count": count}
            for return_type, count in sorted(by_type.items(), key=lambda entry: (-entry[1], entry[0].value))
        ]
        return stats
