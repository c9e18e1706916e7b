from datetime import datetime
from typing import List

import structlog
from sqlalchemy.orm import Session

from returnflow.models.inventory import StockBatch
from returnflow.models.return_case import ReturnCase

logger = structlog.get_logger()


class InventoryReconciler:

    @staticmethod
    def restore(db: Session, case: ReturnCase) -> List[str]:
        """
        Credit returned units back to their originating stock batches.

        Runs inside the caller's transaction and does not commit.
        `inventory_restored_at` makes a second call a no-op. A missing
        batch does not fail the call; it is recorded as a warning on the
        case for manual stock adjustment. Returns the new warnings.
        """
        if case.inventory_restored_at is not None:
            logger.info("inventory_restore_skipped", return_case_id=case.id, reason="already_restored")
            return []

        warnings: List[str] = []
        quantities: dict[int, int] = {}
        for item in case.items:
            batch_id = item.order_item.batch_id
            if batch_id is None:
                warnings.append(
                    f"{item.order_item.product_name}: no stock batch recorded, "
                    f"adjust {item.quantity_returned} unit(s) manually"
                )
                continue
            quantities[batch_id] = quantities.get(batch_id, 0) + item.quantity_returned

        # Lock batches in deterministic order
        locked_batches = {}
        if quantities:
            locked_batches = {
                batch.id: batch
                for batch in (
                    db.query(StockBatch)
                    .filter(StockBatch.id.in_(sorted(quantities.keys())))
                    .with_for_update()
                    .all()
                )
            }

        for batch_id in sorted(quantities.keys()):
            batch = locked_batches.get(batch_id)
            if not batch:
                warnings.append(
                    f"Stock batch {batch_id} no longer exists, "
                    f"adjust {quantities[batch_id]} unit(s) manually"
                )
                continue
            batch.quantity += quantities[batch_id]
            logger.info(
                "inventory_restored",
                return_case_id=case.id,
                batch_id=batch_id,
                quantity=quantities[batch_id],
                new_quantity=batch.quantity,
            )

        for warning in warnings:
            logger.warning("inventory_restore_warning", return_case_id=case.id, warning=warning)

        case.inventory_restored_at = datetime.utcnow()
        if warnings:
            case.inventory_warnings = list(case.inventory_warnings or []) + warnings
        return warnings
