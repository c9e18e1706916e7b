from datetime import datetime
from typing import Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from returnflow.core.config import settings
from returnflow.core.exceptions import InvalidTransitionError, NotFoundError, OverAllocationError, ValidationError
from returnflow.core.money import Money
from returnflow.db.locks import order_guard
from returnflow.models.exchange import ExchangeRecord
from returnflow.models.refund import RefundMethod, RefundRecord, RefundStatus
from returnflow.models.return_case import ReturnCase, ReturnStatus
from returnflow.schemas.refund import RefundAmounts, RefundCreate
from returnflow.services.return_case_service import ReturnCaseService, ensure_allowed, set_status

logger = structlog.get_logger()


def cash_from_denominations(denominations: Optional[Dict[int, int]], currency: str) -> Money:
    """Total a banknote breakdown ``{face_value: count}`` over the configured note set."""
    total = Money.zero(currency)
    if not denominations:
        return total
    allowed = set(settings.CASH_DENOMINATIONS)
    for face, count in denominations.items():
        face = int(face)
        count = int(count)
        if face not in allowed:
            raise ValidationError(f"Unknown banknote denomination {face}", denomination=face)
        if count < 0:
            raise ValidationError("Banknote count cannot be negative", denomination=face)
        total = total + Money.from_major(face, currency) * count
    return total


def _split(amounts: RefundAmounts, denominations: Optional[Dict[int, int]], currency: str) -> Dict[RefundMethod, Money]:
    split = {}
    for method, value in amounts.by_method().items():
        money = Money.from_major(value, currency)
        if money.is_negative():
            raise ValidationError(f"{method.value} amount cannot be negative", method=method.value)
        split[method] = money

    counted = cash_from_denominations(denominations, currency)
    if not counted.is_zero():
        split[RefundMethod.CASH] = counted
    return split


def _clean_denominations(denominations: Optional[Dict[int, int]]) -> Optional[Dict[str, int]]:
    if not denominations:
        return None
    return {str(face): count for face, count in sorted(denominations.items(), reverse=True) if count}


class RefundAllocator:

    @staticmethod
    def unallocated(db: Session, case: ReturnCase) -> Money:
        """Net refund less every record already created against the case."""
        allocated = Money.sum(
            (record.money for record in case.refunds if record.exchange_id is None),
            case.currency,
        )
        return case.net_refund - allocated

    @staticmethod
    def remaining(db: Session, case: ReturnCase) -> Money:
        completed = Money.sum(
            (
                record.money
                for record in case.refunds
                if record.exchange_id is None and record.status == RefundStatus.COMPLETED
            ),
            case.currency,
        )
        return case.net_refund - completed

    @staticmethod
    def _settle_case_if_done(db: Session, case: ReturnCase) -> None:
        if case.status == ReturnStatus.COMPLETED and RefundAllocator.remaining(db, case).amount <= 0:
            set_status(case, ReturnStatus.REFUNDED, "Refund fully settled")

    @staticmethod
    def _record(
        case: ReturnCase,
        method: RefundMethod,
        amount: Money,
        *,
        settle: bool,
        transaction_reference: Optional[str] = None,
        denominations: Optional[Dict[str, int]] = None,
        notes: Optional[str] = None,
        exchange: Optional[ExchangeRecord] = None,
    ) -> RefundRecord:
        now = datetime.utcnow()
        record = RefundRecord(
            amount=amount.amount,
            currency=amount.currency,
            method=method,
            status=RefundStatus.COMPLETED if settle else RefundStatus.PENDING,
            transaction_reference=transaction_reference,
            denominations=denominations,
            notes=notes,
            processed_at=now if settle else None,
            completed_at=now if settle else None,
        )
        case.refunds.append(record)
        if exchange is not None:
            exchange.payouts.append(record)
        return record

    @staticmethod
    def allocate(db: Session, data: RefundCreate) -> List[RefundRecord]:
        """
        Split a completed case's refund across instruments.

        Creates one record per positive component. The split may not
        exceed what is still unallocated on the case.
        """
        case = ReturnCaseService.get(db, data.return_id)
        with order_guard(db, case.order_id):
            db.refresh(case)
            ensure_allowed(case, "refund")

            split = _split(data.amounts, data.denominations, case.currency)
            requested = Money.sum(split.values(), case.currency)
            if requested.is_zero():
                raise ValidationError("At least one refund amount must be positive")

            unallocated = RefundAllocator.unallocated(db, case)
            if requested > unallocated:
                raise OverAllocationError(requested, unallocated)

            records = []
            for method, amount in split.items():
                if amount.is_zero():
                    continue
                records.append(
                    RefundAllocator._record(
                        case,
                        method,
                        amount,
                        settle=data.settle,
                        transaction_reference=data.transaction_reference,
                        denominations=_clean_denominations(data.denominations) if method == RefundMethod.CASH else None,
                        notes=data.notes,
                    )
                )

            RefundAllocator._settle_case_if_done(db, case)
            db.commit()

        db.refresh(case)
        logger.info(
            "refund_allocated",
            return_case_id=case.id,
            refund_ids=[record.id for record in records],
            amount=str(requested),
            settled=data.settle,
            remaining=str(RefundAllocator.remaining(db, case)),
        )
        return records

    @staticmethod
    def allocate_exchange_credit(db: Session, case: ReturnCase, reference: str) -> RefundRecord:
        """Settle the full case refund as exchange credit. Caller holds the order guard."""
        ensure_allowed(case, "refund")
        unallocated = RefundAllocator.unallocated(db, case)
        if unallocated.amount <= 0:
            raise OverAllocationError(unallocated, unallocated.clamp_zero())
        record = RefundAllocator._record(
            case,
            RefundMethod.EXCHANGE_CREDIT,
            unallocated,
            settle=True,
            transaction_reference=reference,
            notes="Applied to replacement order",
        )
        RefundAllocator._settle_case_if_done(db, case)
        return record

    @staticmethod
    def allocate_surplus(
        db: Session,
        exchange: ExchangeRecord,
        amounts: RefundAmounts,
        denominations: Optional[Dict[int, int]] = None,
    ) -> List[RefundRecord]:
        """Pay out a positive exchange net. Payouts sit outside the case refund total."""
        case = exchange.return_case
        with order_guard(db, case.order_id):
            db.refresh(exchange)
            if exchange.net_amount <= 0:
                raise InvalidTransitionError(
                    "Cannot settle: customer is not owed money on this exchange",
                )

            split = _split(amounts, denominations, exchange.currency)
            requested = Money.sum(split.values(), exchange.currency)
            if requested.is_zero():
                raise ValidationError("At least one refund amount must be positive")
            if requested > exchange.surplus_remaining:
                raise OverAllocationError(requested, exchange.surplus_remaining)

            records = [
                RefundAllocator._record(
                    case,
                    method,
                    amount,
                    settle=True,
                    transaction_reference=f"{settings.EXCHANGE_REFERENCE_PREFIX}-{case.return_number}-SURPLUS",
                    denominations=_clean_denominations(denominations) if method == RefundMethod.CASH else None,
                    exchange=exchange,
                )
                for method, amount in split.items()
                if not amount.is_zero()
            ]
            db.commit()

        db.refresh(exchange)
        logger.info(
            "exchange_surplus_paid",
            exchange_id=exchange.id,
            amount=str(requested),
            surplus_remaining=str(exchange.surplus_remaining),
        )
        return records

    @staticmethod
    def get_refund(db: Session, refund_id: int) -> RefundRecord:
        record = db.query(RefundRecord).filter(RefundRecord.id == refund_id).first()
        if not record:
            raise NotFoundError("Refund not found", refund_id=refund_id)
        return record

    @staticmethod
    def process_refund(db: Session, refund_id: int) -> RefundRecord:
        record = RefundAllocator.get_refund(db, refund_id)
        with order_guard(db, record.return_case.order_id):
            db.refresh(record)
            if record.status != RefundStatus.PENDING:
                raise InvalidTransitionError(
                    f"Cannot process refund: refund is {record.status.value}",
                    current_status=record.status.value,
                )
            record.status = RefundStatus.PROCESSED
            record.processed_at = datetime.utcnow()
            db.commit()
        db.refresh(record)
        logger.info("refund_processed", refund_id=record.id, return_case_id=record.return_case_id)
        return record

    @staticmethod
    def complete_refund(db: Session, refund_id: int, transaction_reference: Optional[str] = None) -> RefundRecord:
        """processed -> completed. Completing an already completed refund is a no-op."""
        record = RefundAllocator.get_refund(db, refund_id)
        with order_guard(db, record.return_case.order_id):
            db.refresh(record)
            if record.status == RefundStatus.COMPLETED:
                db.rollback()
                db.refresh(record)
                return record
            if record.status != RefundStatus.PROCESSED:
                raise InvalidTransitionError(
                    f"Cannot complete refund: refund is {record.status.value}",
                    current_status=record.status.value,
                )
            record.status = RefundStatus.COMPLETED
            record.completed_at = datetime.utcnow()
            if transaction_reference:
                record.transaction_reference = transaction_reference

            case = record.return_case
            db.refresh(case)
            RefundAllocator._settle_case_if_done(db, case)
            db.commit()
        db.refresh(record)
        logger.info(
            "refund_completed",
            refund_id=record.id,
            return_case_id=record.return_case_id,
            amount=str(record.money),
        )
        return record

    @staticmethod
    def list_refunds(
        db: Session,
        return_case_id: Optional[int] = None,
        status: Optional[RefundStatus] = None,
        method: Optional[RefundMethod] = None,
    ) -> List[RefundRecord]:
        query = db.query(RefundRecord)
        if return_case_id is not None:
            query = query.filter(RefundRecord.return_case_id == return_case_id)
        if status is not None:
            query = query.filter(RefundRecord.status == status)
        if method is not None:
            query = query.filter(RefundRecord.method == method)
        return query.order_by(RefundRecord.id).all()

    @staticmethod
    def workflow(db: Session, case_id: int) -> dict:
        case = ReturnCaseService.get(db, case_id)
        case_refunds = [record for record in case.refunds if record.exchange_id is None]
        refunded = Money.sum(
            (record.money for record in case_refunds if record.status == RefundStatus.COMPLETED),
            case.currency,
        )
        remaining = RefundAllocator.remaining(db, case)
        return {
            "case": case,
            "refunds": case_refunds,
            "total_refunded": refunded,
            "remaining": remaining,
            "can_create_refund": case.status == ReturnStatus.COMPLETED
            and RefundAllocator.unallocated(db, case).amount > 0,
        }
