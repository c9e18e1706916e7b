from sqlalchemy import Column, Integer, DateTime
from datetime import datetime
from returnflow.db.base_class import Base


class StockBatch(Base):
    """Stock counter for one product batch at one location."""
    __tablename__ = "stock_batches"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, nullable=False, index=True)
    store_id = Column(Integer, nullable=True)
    quantity = Column(Integer, default=0, nullable=False)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
