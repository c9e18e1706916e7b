from typing import List

import structlog
from sqlalchemy.orm import Session

from returnflow.core.config import settings
from returnflow.core.exceptions import (
    ExchangeIncompleteError,
    InvalidTransitionError,
    NotFoundError,
    OrderServiceError,
    ReturnFlowError,
)
from returnflow.db.locks import order_guard
from returnflow.models.exchange import ExchangeAttempt, ExchangeRecord, ExchangeStatus
from returnflow.models.order import Order, OrderStatus
from returnflow.models.refund import RefundRecord
from returnflow.models.return_case import ReturnStatus
from returnflow.schemas.exchange import ExchangeCreate, ExchangeSettle, ReplacementItem
from returnflow.schemas.return_case import ReturnApprove, ReturnCaseCreate
from returnflow.services.order_gateway import OrderGateway
from returnflow.services.refund_allocator import RefundAllocator
from returnflow.services.return_case_service import ReturnCaseService

logger = structlog.get_logger()


class ExchangeCoordinator:
    """
    Return + replacement order, run as a saga.

    Every finished step is committed and recorded on the ExchangeAttempt,
    so a failure after the refund leaves a resumable attempt instead of
    a refunded case with no trace of the replacement.
    """

    @staticmethod
    def _advance(db: Session, attempt: ExchangeAttempt, status: ExchangeStatus) -> None:
        attempt.status = status
        attempt.last_error = None
        db.commit()
        logger.info("exchange_step", attempt_id=attempt.id, status=status.value)

    @staticmethod
    def _fail(db: Session, attempt: ExchangeAttempt, exc: Exception) -> None:
        db.rollback()
        attempt.status = ExchangeStatus.INCOMPLETE
        attempt.last_error = str(exc)[:1000]
        db.commit()

    @staticmethod
    def run(db: Session, gateway: OrderGateway, data: ExchangeCreate) -> ExchangeRecord:
        attempt = ExchangeAttempt(
            order_id=data.order_id,
            status=ExchangeStatus.STARTED,
            replacement_items=[item.model_dump(mode="json") for item in data.replacement_items],
        )
        db.add(attempt)
        db.commit()
        logger.info("exchange_started", attempt_id=attempt.id, order_id=data.order_id)

        try:
            case = ReturnCaseService.open(
                db,
                gateway,
                ReturnCaseCreate(
                    order_id=data.order_id,
                    return_type=data.return_type,
                    return_reason=data.return_reason or "Exchange",
                    items=data.items,
                    customer_notes=data.customer_notes,
                ),
            )
            attempt.return_case_id = case.id
            db.commit()

            ReturnCaseService.record_quality_check(db, case.id, True, "Accepted for exchange")
            ReturnCaseService.approve(db, case.id, ReturnApprove(), gateway=gateway)
            ReturnCaseService.process(db, case.id, restore_inventory=data.restore_inventory)
            case = ReturnCaseService.complete(db, case.id)
            ExchangeCoordinator._advance(db, attempt, ExchangeStatus.RETURN_COMPLETED)

            with order_guard(db, case.order_id):
                db.refresh(case)
                if case.status == ReturnStatus.COMPLETED:
                    reference = f"{settings.EXCHANGE_REFERENCE_PREFIX}-{case.return_number}"
                    refund = RefundAllocator.allocate_exchange_credit(db, case, reference)
                    db.flush()
                    attempt.refund_id = refund.id
                db.commit()
            ExchangeCoordinator._advance(db, attempt, ExchangeStatus.REFUNDED)
        except ReturnFlowError as exc:
            ExchangeCoordinator._fail(db, attempt, exc)
            logger.warning("exchange_aborted", attempt_id=attempt.id, error=str(exc))
            raise

        return ExchangeCoordinator._place_order(db, gateway, attempt)

    @staticmethod
    def _place_order(db: Session, gateway: OrderGateway, attempt: ExchangeAttempt) -> ExchangeRecord:
        case = attempt.return_case
        source = db.query(Order).filter(Order.id == attempt.order_id).first()
        items = [ReplacementItem.model_validate(item) for item in attempt.replacement_items]
        credit = case.net_refund

        try:
            if attempt.new_order_id is None:
                new_order = gateway.create_order(
                    db,
                    source_order=source,
                    items=items,
                    credit=credit,
                    notes=f"Exchange for return {case.return_number}",
                )
                attempt.new_order_id = new_order.id
                ExchangeCoordinator._advance(db, attempt, ExchangeStatus.ORDER_CREATED)
            else:
                new_order = gateway.load_order(db, attempt.new_order_id)

            if new_order.status != OrderStatus.COMPLETED:
                new_order = gateway.complete_order(db, new_order)
                db.commit()
        except (OrderServiceError, ReturnFlowError) as exc:
            ExchangeCoordinator._fail(db, attempt, exc)
            logger.error(
                "exchange_incomplete",
                attempt_id=attempt.id,
                return_case_id=case.id,
                refund_id=attempt.refund_id,
                new_order_id=attempt.new_order_id,
                error=str(exc),
            )
            raise ExchangeIncompleteError(case.id, attempt.refund_id, attempt.id, str(exc)) from exc

        net = credit - new_order.total
        record = ExchangeRecord(
            attempt_id=attempt.id,
            return_case_id=case.id,
            new_order_id=new_order.id,
            currency=case.currency,
            refund_amount=credit.amount,
            new_order_total=new_order.total_amount,
            net_amount=net.amount,
        )
        db.add(record)
        ExchangeCoordinator._advance(db, attempt, ExchangeStatus.COMPLETED)
        db.refresh(record)

        logger.info(
            "exchange_completed",
            exchange_id=record.id,
            attempt_id=attempt.id,
            return_case_id=case.id,
            new_order_id=new_order.id,
            net_amount=str(net),
        )
        if net.is_negative():
            logger.info(
                "exchange_balance_due",
                exchange_id=record.id,
                new_order_id=new_order.id,
                amount=str(-net),
            )
        return record

    @staticmethod
    def get_attempt(db: Session, attempt_id: int) -> ExchangeAttempt:
        attempt = db.query(ExchangeAttempt).filter(ExchangeAttempt.id == attempt_id).first()
        if not attempt:
            raise NotFoundError("Exchange attempt not found", attempt_id=attempt_id)
        return attempt

    @staticmethod
    def get_exchange(db: Session, exchange_id: int) -> ExchangeRecord:
        record = db.query(ExchangeRecord).filter(ExchangeRecord.id == exchange_id).first()
        if not record:
            raise NotFoundError("Exchange not found", exchange_id=exchange_id)
        return record

    @staticmethod
    def resume(db: Session, gateway: OrderGateway, attempt_id: int) -> ExchangeRecord:
        """Retry the order steps of an incomplete attempt whose refund is done."""
        attempt = ExchangeCoordinator.get_attempt(db, attempt_id)
        if attempt.status == ExchangeStatus.COMPLETED and attempt.record is not None:
            return attempt.record

        case = attempt.return_case
        if attempt.status != ExchangeStatus.INCOMPLETE or case is None or case.status != ReturnStatus.REFUNDED:
            raise InvalidTransitionError(
                "Cannot resume: return refund not completed",
                current_status=attempt.status.value,
            )
        logger.info("exchange_resumed", attempt_id=attempt.id, new_order_id=attempt.new_order_id)
        return ExchangeCoordinator._place_order(db, gateway, attempt)

    @staticmethod
    def settle(db: Session, exchange_id: int, data: ExchangeSettle) -> List[RefundRecord]:
        exchange = ExchangeCoordinator.get_exchange(db, exchange_id)
        return RefundAllocator.allocate_surplus(db, exchange, data.amounts, data.denominations)
