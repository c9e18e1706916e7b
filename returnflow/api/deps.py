from returnflow.db.session import get_db
from returnflow.services.order_gateway import OrderGateway, get_order_gateway

__all__ = ["get_db", "get_order_gateway", "OrderGateway"]
