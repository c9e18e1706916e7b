from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime
from returnflow.db.base_class import Base


class UnitBarcode(Base):
    """One physical unit of an order item. `returned` only ever goes False -> True."""
    __tablename__ = "unit_barcodes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(120), unique=True, nullable=False, index=True)
    order_item_id = Column(Integer, ForeignKey("order_items.id"), nullable=False, index=True)

    # Placeholder generated because the order subsystem had no per-unit barcode
    synthetic = Column(Boolean, default=False, nullable=False)

    returned = Column(Boolean, default=False, nullable=False)
    returned_at = Column(DateTime, nullable=True)
    return_case_id = Column(Integer, ForeignKey("return_cases.id"), nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    order_item = relationship("OrderItem", back_populates="barcodes")
