from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Enum, Text, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from returnflow.db.base_class import Base
from returnflow.core.money import Money


class ExchangeStatus(str, enum.Enum):
    STARTED = "started"
    RETURN_COMPLETED = "return_completed"
    REFUNDED = "refunded"
    ORDER_CREATED = "order_created"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"


class ExchangeAttempt(Base):
    """Saga log: one row per exchange run, updated after every finished step."""
    __tablename__ = "exchange_attempts"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    status = Column(Enum(ExchangeStatus), default=ExchangeStatus.STARTED, nullable=False, index=True)

    return_case_id = Column(Integer, ForeignKey("return_cases.id"), nullable=True)
    refund_id = Column(Integer, nullable=True)
    new_order_id = Column(Integer, nullable=True)

    replacement_items = Column(JSON, nullable=False)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    return_case = relationship("ReturnCase")
    record = relationship("ExchangeRecord", back_populates="attempt", uselist=False)


class ExchangeRecord(Base):
    __tablename__ = "exchange_records"

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(Integer, ForeignKey("exchange_attempts.id"), nullable=False, unique=True)
    return_case_id = Column(Integer, ForeignKey("return_cases.id"), nullable=False, unique=True)
    new_order_id = Column(Integer, nullable=False)

    currency = Column(String(3), nullable=False)
    refund_amount = Column(Integer, nullable=False)
    new_order_total = Column(Integer, nullable=False)
    # Signed: positive is owed to the customer, negative is owed by the customer
    net_amount = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    attempt = relationship("ExchangeAttempt", back_populates="record")
    return_case = relationship("ReturnCase")
    payouts = relationship("RefundRecord", back_populates="exchange", order_by="RefundRecord.id")

    @property
    def net(self) -> Money:
        return Money(self.net_amount, self.currency)

    @property
    def surplus_paid(self) -> Money:
        return Money.sum((p.money for p in self.payouts), self.currency)

    @property
    def surplus_remaining(self) -> Money:
        if self.net_amount <= 0:
            return Money.zero(self.currency)
        return (self.net - self.surplus_paid).clamp_zero()
