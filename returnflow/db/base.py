from returnflow.db.base_class import Base


# IMPORT ALL MODELS HERE (THIS REGISTERS THEM WITH Base.metadata)
from returnflow.models.order import Order, OrderItem
from returnflow.models.barcode import UnitBarcode
from returnflow.models.inventory import StockBatch
from returnflow.models.return_case import ReturnCase, ReturnCaseItem, ReturnStatusHistory
from returnflow.models.refund import RefundRecord
from returnflow.models.exchange import ExchangeAttempt, ExchangeRecord
