import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List

import structlog
from sqlalchemy.orm import Session

from returnflow.core.exceptions import NotFoundError
from returnflow.models.order import Order

logger = structlog.get_logger()

_registry_guard = threading.Lock()
# order id -> [lock, number of threads holding or waiting on it]
_order_locks: Dict[int, List] = {}


@contextmanager
def _order_lock(order_id: int) -> Iterator[None]:
    with _registry_guard:
        entry = _order_locks.get(order_id)
        if entry is None:
            entry = [threading.RLock(), 0]
            _order_locks[order_id] = entry
        entry[1] += 1
    try:
        with entry[0]:
            yield
    finally:
        with _registry_guard:
            entry[1] -= 1
            if entry[1] == 0:
                del _order_locks[order_id]


@contextmanager
def order_guard(db: Session, order_id: int) -> Iterator[Order]:
    """
    Serialize every return-side mutation on one order.

    Holds a process-local lock keyed by order id and a row lock on the
    order (SELECT ... FOR UPDATE) until the caller commits or rolls back.
    Any exception rolls the transaction back before the lock is released.
    """
    with _order_lock(order_id):
        try:
            order = (
                db.query(Order)
                .filter(Order.id == order_id)
                .with_for_update()
                .first()
            )
            if not order:
                raise NotFoundError("Order not found", order_id=order_id)
            yield order
        except Exception:
            db.rollback()
            logger.debug("order_guard_rollback", order_id=order_id)
            raise
