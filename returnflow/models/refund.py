from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Enum, Text, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from returnflow.db.base_class import Base
from returnflow.core.money import Money


class RefundMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    BKASH = "bkash"
    NAGAD = "nagad"
    EXCHANGE_CREDIT = "exchange_credit"


class RefundStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    COMPLETED = "completed"


class RefundRecord(Base):
    __tablename__ = "refund_records"

    id = Column(Integer, primary_key=True, index=True)
    return_case_id = Column(Integer, ForeignKey("return_cases.id"), nullable=False, index=True)
    # Set only for payouts of a positive exchange net; such rows sit outside the case total
    exchange_id = Column(Integer, ForeignKey("exchange_records.id"), nullable=True, index=True)

    amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    method = Column(Enum(RefundMethod), nullable=False)
    status = Column(Enum(RefundStatus), default=RefundStatus.PENDING, nullable=False, index=True)

    transaction_reference = Column(String(120), nullable=True)
    denominations = Column(JSON, nullable=True)  # {"1000": 2, "500": 1}
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    return_case = relationship("ReturnCase", back_populates="refunds")
    exchange = relationship("ExchangeRecord", back_populates="payouts")

    @property
    def money(self) -> Money:
        return Money(self.amount, self.currency)
