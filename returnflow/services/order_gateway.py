import logging
import random
import string
from datetime import datetime
from typing import List, Optional

import httpx
from sqlalchemy.orm import Session

from returnflow.core.config import settings
from returnflow.core.exceptions import NotFoundError, OrderServiceError, ValidationError
from returnflow.core.money import Money
from returnflow.models.order import Order, OrderItem, OrderStatus
from returnflow.schemas.exchange import ReplacementItem
from returnflow.schemas.order import RemoteOrder
from returnflow.services.barcode_ledger import BarcodeLedger

logger = logging.getLogger(__name__)


def generate_order_number(db: Session) -> str:
    """Generate a unique order number with bounded retries."""
    max_attempts = 10

    for _ in range(max_attempts):
        timestamp = datetime.now().strftime("%Y%m%d")
        random_part = "".join(
            random.choices(string.ascii_uppercase + string.digits, k=8)
        )
        order_number = f"EXC{timestamp}{random_part}"

        existing = db.query(Order).filter(Order.order_number == order_number).first()
        if not existing:
            return order_number

    raise ValueError("Failed to generate unique order number")


class OrderGateway:
    """Seam to the order subsystem. Every method may block on I/O."""

    def load_order(self, db: Session, order_id: int) -> Order:
        raise NotImplementedError

    def create_order(
        self,
        db: Session,
        *,
        source_order: Order,
        items: List[ReplacementItem],
        credit: Money,
        notes: Optional[str] = None,
    ) -> Order:
        raise NotImplementedError

    def complete_order(self, db: Session, order: Order) -> Order:
        raise NotImplementedError


class LocalOrderGateway(OrderGateway):
    """Orders live in the same database as the return engine."""

    def load_order(self, db: Session, order_id: int) -> Order:
        order = db.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise NotFoundError("Order not found", order_id=order_id)
        return order

    def create_order(self, db, *, source_order, items, credit, notes=None):
        currency = source_order.currency
        order = Order(
            order_number=generate_order_number(db),
            customer_id=source_order.customer_id,
            store_id=source_order.store_id,
            currency=currency,
            status=OrderStatus.PENDING,
            notes=notes,
        )
        total = Money.zero(currency)
        for item in items:
            unit = Money.from_major(item.unit_price, currency)
            line_total = unit * item.quantity
            total = total + line_total
            order.items.append(
                OrderItem(
                    product_id=item.product_id,
                    batch_id=item.batch_id,
                    product_name=item.product_name,
                    quantity=item.quantity,
                    unit_price=unit.amount,
                    total_price=line_total.amount,
                )
            )
        order.total_amount = total.amount
        # Exchange credit pays for the new order up to its total; the rest stays outstanding
        order.paid_amount = min(credit, total).amount
        db.add(order)
        db.flush()
        return order

    def complete_order(self, db, order):
        order.status = OrderStatus.COMPLETED
        order.completed_at = datetime.utcnow()
        db.flush()
        return order


class HttpOrderGateway(OrderGateway):
    """
    Talks to a remote order service over HTTP and keeps a local snapshot.

    The snapshot (order, items, unit barcodes) is what the ledger and the
    state machine lock and validate against.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, token: str = "", client: Optional[httpx.Client] = None):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.client = client or httpx.Client(base_url=base_url, timeout=timeout, headers=headers)

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("order_service_unreachable method=%s path=%s error=%s", method, path, exc)
            raise OrderServiceError(f"Order service unreachable: {exc}") from exc

        if response.status_code == 404:
            raise NotFoundError("Order not found", path=path)
        if response.status_code >= 400:
            logger.error(
                "order_service_error method=%s path=%s status=%s body=%s",
                method,
                path,
                response.status_code,
                response.text[:500],
            )
            raise OrderServiceError(f"Order service returned {response.status_code}")

        payload = response.json()
        if isinstance(payload, dict) and "data" in payload:
            if payload.get("success") is False:
                raise OrderServiceError(payload.get("message") or "Order service rejected the request")
            payload = payload["data"]
        return payload

    def load_order(self, db: Session, order_id: int) -> Order:
        payload = self._request("GET", f"/orders/{order_id}")
        return self.upsert_snapshot(db, RemoteOrder.model_validate(payload))

    def create_order(self, db, *, source_order, items, credit, notes=None):
        currency = source_order.currency
        body = {
            "order_type": "counter",
            "customer_id": source_order.customer_id,
            "store_id": source_order.store_id,
            "items": [
                {
                    "product_id": item.product_id,
                    "batch_id": item.batch_id,
                    "quantity": item.quantity,
                    "unit_price": str(item.unit_price),
                }
                for item in items
            ],
            "payment": {
                "payment_type": "exchange_credit",
                "amount": str(credit.to_decimal()),
            },
            "notes": notes,
        }
        payload = self._request("POST", "/orders", json=body)
        remote = RemoteOrder.model_validate(payload)
        if remote.currency is None:
            remote.currency = currency
        return self.upsert_snapshot(db, remote)

    def complete_order(self, db, order):
        payload = self._request("POST", f"/orders/{order.id}/complete")
        return self.upsert_snapshot(db, RemoteOrder.model_validate(payload))

    def upsert_snapshot(self, db: Session, remote: RemoteOrder) -> Order:
        currency = (remote.currency or settings.DEFAULT_CURRENCY).upper()
        paid = Money.from_major(remote.paid_amount or 0, currency)
        order = db.query(Order).filter(Order.id == remote.id).first()

        if remote.total_amount is not None:
            total = Money.from_major(remote.total_amount, currency)
        elif remote.outstanding_amount is not None:
            total = paid + Money.from_major(remote.outstanding_amount, currency)
        else:
            total = Money.sum(
                (Money.from_major(item.unit_price, currency) * item.quantity for item in remote.items),
                currency,
            )

        try:
            status = OrderStatus(remote.status)
        except ValueError as exc:
            raise ValidationError(f"Unknown order status {remote.status!r}", order_id=remote.id) from exc

        if order is None:
            order = Order(id=remote.id, order_number=remote.order_number, currency=currency)
            db.add(order)
            for remote_item in remote.items:
                unit = Money.from_major(remote_item.unit_price, currency)
                item = OrderItem(
                    id=remote_item.id,
                    product_id=remote_item.product_id,
                    batch_id=remote_item.batch_id or remote_item.product_batch_id,
                    product_name=remote_item.product_name,
                    quantity=remote_item.quantity,
                    unit_price=unit.amount,
                    total_price=(unit * remote_item.quantity).amount,
                )
                order.items.append(item)
                if remote_item.barcodes:
                    BarcodeLedger.register_barcodes(item, remote_item.barcodes)

        # Items are immutable once the order completes; only money and status move
        order.customer_id = remote.customer_id
        order.store_id = remote.store_id
        order.total_amount = total.amount
        order.paid_amount = paid.amount
        if order.status != status:
            order.status = status
            if status == OrderStatus.COMPLETED:
                order.completed_at = datetime.utcnow()
        # Placeholders for units without barcodes are added later, under the order guard
        db.commit()
        db.refresh(order)
        return order


_default_gateway: Optional[OrderGateway] = None


def get_order_gateway() -> OrderGateway:
    """FastAPI dependency; HTTP gateway when ORDER_SERVICE_URL is configured."""
    global _default_gateway
    if _default_gateway is None:
        if settings.uses_remote_orders:
            _default_gateway = HttpOrderGateway(
                settings.ORDER_SERVICE_URL,
                timeout=settings.ORDER_SERVICE_TIMEOUT,
                token=settings.ORDER_SERVICE_TOKEN,
            )
        else:
            _default_gateway = LocalOrderGateway()
    return _default_gateway
