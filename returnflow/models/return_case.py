from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Enum, Text, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from returnflow.db.base_class import Base
from returnflow.core.money import Money


class ReturnType(str, enum.Enum):
    DEFECTIVE = "defective"
    DAMAGED = "damaged"
    WRONG_ITEM = "wrong_item"
    UNWANTED = "unwanted"
    OTHER = "other"


class ReturnStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSED = "processed"
    COMPLETED = "completed"
    REFUNDED = "refunded"


TERMINAL_STATUSES = {ReturnStatus.REJECTED, ReturnStatus.REFUNDED}


class ReturnCase(Base):
    __tablename__ = "return_cases"

    id = Column(Integer, primary_key=True, index=True)
    return_number = Column(String(50), unique=True, nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)

    return_type = Column(Enum(ReturnType), nullable=False)
    return_reason = Column(Text, nullable=False)
    status = Column(Enum(ReturnStatus), default=ReturnStatus.PENDING, nullable=False, index=True)

    # Amounts in minor units of `currency`
    currency = Column(String(3), nullable=False)
    total_return_value = Column(Integer, nullable=False, default=0)
    total_refund_amount = Column(Integer, nullable=False, default=0)
    processing_fee = Column(Integer, nullable=False, default=0)

    quality_check_passed = Column(Boolean, nullable=True)
    quality_check_notes = Column(Text, nullable=True)
    customer_notes = Column(Text, nullable=True)
    internal_notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Units were picked from placeholder barcodes; damaged/undamaged units are indistinguishable
    degraded_barcodes = Column(Boolean, default=False, nullable=False)

    inventory_restored_at = Column(DateTime, nullable=True)
    inventory_warnings = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    order = relationship("Order", back_populates="returns")
    items = relationship("ReturnCaseItem", back_populates="return_case", cascade="all, delete-orphan", order_by="ReturnCaseItem.id")
    barcodes = relationship("UnitBarcode", order_by="UnitBarcode.id")
    refunds = relationship("RefundRecord", back_populates="return_case", order_by="RefundRecord.id")
    status_history = relationship("ReturnStatusHistory", back_populates="return_case", cascade="all, delete-orphan", order_by="ReturnStatusHistory.id")

    @property
    def return_value(self) -> Money:
        return Money(self.total_return_value, self.currency)

    @property
    def refund_total(self) -> Money:
        return Money(self.total_refund_amount, self.currency)

    @property
    def fee(self) -> Money:
        return Money(self.processing_fee, self.currency)

    @property
    def net_refund(self) -> Money:
        """What the customer is actually paid: refund total less the fee, never negative."""
        return (self.refund_total - self.fee).clamp_zero()


class ReturnCaseItem(Base):
    __tablename__ = "return_case_items"

    id = Column(Integer, primary_key=True, index=True)
    return_case_id = Column(Integer, ForeignKey("return_cases.id"), nullable=False, index=True)
    order_item_id = Column(Integer, ForeignKey("order_items.id"), nullable=False, index=True)

    quantity_returned = Column(Integer, nullable=False)
    unit_price = Column(Integer, nullable=False)  # Copied from the order item, never re-entered
    reason = Column(Text, nullable=True)

    # Relationships
    return_case = relationship("ReturnCase", back_populates="items")
    order_item = relationship("OrderItem")


class ReturnStatusHistory(Base):
    __tablename__ = "return_status_history"

    id = Column(Integer, primary_key=True, index=True)
    return_case_id = Column(Integer, ForeignKey("return_cases.id"), nullable=False, index=True)

    old_status = Column(String(50), nullable=True)
    new_status = Column(String(50), nullable=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    return_case = relationship("ReturnCase", back_populates="status_history")
