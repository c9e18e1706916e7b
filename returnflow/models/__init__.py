from returnflow.models.order import Order, OrderItem, OrderStatus
from returnflow.models.barcode import UnitBarcode
from returnflow.models.inventory import StockBatch
from returnflow.models.return_case import (
    ReturnCase,
    ReturnCaseItem,
    ReturnStatus,
    ReturnStatusHistory,
    ReturnType,
)
from returnflow.models.refund import RefundMethod, RefundRecord, RefundStatus
from returnflow.models.exchange import ExchangeAttempt, ExchangeRecord, ExchangeStatus
