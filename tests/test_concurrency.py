import threading

import pytest
from sqlalchemy.orm import Session, sessionmaker

from returnflow.core.exceptions import AlreadyReturnedError, OverReturnError
from returnflow.db import locks
from returnflow.db.locks import order_guard
from returnflow.models.barcode import UnitBarcode
from returnflow.models.return_case import ReturnCase, ReturnType
from returnflow.schemas.return_case import ReturnCaseCreate, ReturnItemCreate
from returnflow.services.barcode_ledger import BarcodeLedger
from returnflow.services.order_gateway import LocalOrderGateway
from returnflow.services.return_case_service import ReturnCaseService


@pytest.fixture()
def session_factory(db_session: Session):
    """Independent sessions on the same database file, one per worker."""
    return sessionmaker(autocommit=False, autoflush=False, bind=db_session.get_bind())


def _race(workers):
    """Start every worker at once; return (results, errors) in worker order."""
    barrier = threading.Barrier(len(workers))
    results = [None] * len(workers)
    errors = [None] * len(workers)

    def run(index, work):
        barrier.wait()
        try:
            results[index] = work()
        except Exception as exc:
            errors[index] = exc

    threads = [threading.Thread(target=run, args=(index, work)) for index, work in enumerate(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results, errors


def test_concurrent_mark_returned_has_exactly_one_winner(session_factory, make_order):
    order = make_order(lines=(("Cotton Panjabi", 1, 50000),), barcodes=[["PNJ-LAST"]])
    assert order.items[0].barcodes[0].code == "PNJ-LAST"

    order_id = order.id

    def mark():
        with session_factory() as db:
            with order_guard(db, order_id):
                BarcodeLedger.mark_returned(db, "PNJ-LAST")
                db.commit()
        return "returned"

    results, errors = _race([mark, mark])

    assert results.count("returned") == 1
    assert sum(isinstance(error, AlreadyReturnedError) for error in errors) == 1


def test_concurrent_opens_on_last_unit_create_one_case(session_factory, db_session: Session, make_order):
    order = make_order(lines=(("Silk Saree", 1, 100000),))
    order_id, item_id = order.id, order.items[0].id
    gateway = LocalOrderGateway()

    def open_return():
        with session_factory() as db:
            case = ReturnCaseService.open(
                db,
                gateway,
                ReturnCaseCreate(
                    order_id=order_id,
                    return_reason="Changed mind",
                    return_type=ReturnType.UNWANTED,
                    items=[ReturnItemCreate(order_item_id=item_id, quantity=1)],
                ),
            )
            return case.id

    results, errors = _race([open_return, open_return])

    assert len([case_id for case_id in results if case_id is not None]) == 1
    losers = [error for error in errors if error is not None]
    assert len(losers) == 1
    assert isinstance(losers[0], (OverReturnError, AlreadyReturnedError))

    db_session.expire_all()
    assert db_session.query(ReturnCase).count() == 1
    assert db_session.query(UnitBarcode).filter(UnitBarcode.returned == True).count() == 1  # noqa: E712


def test_placeholders_from_a_stale_session_are_not_duplicated(session_factory, db_session: Session, make_order, gateway):
    order = make_order(lines=(("Cotton Panjabi", 2, 50000),))

    with session_factory() as stale:
        # Loads the order while it still has no unit barcodes
        stale_order = gateway.load_order(stale, order.id)
        assert stale_order.items[0].barcodes == []

        ReturnCaseService.open(
            db_session,
            gateway,
            ReturnCaseCreate(
                order_id=order.id,
                return_reason="Too small",
                return_type=ReturnType.UNWANTED,
                items=[ReturnItemCreate(order_item_id=order.items[0].id, quantity=1)],
            ),
        )

        refreshed = BarcodeLedger.ensure_barcodes_locked(stale, order.id)
        assert len(refreshed.items[0].barcodes) == 2

    db_session.expire_all()
    assert db_session.query(UnitBarcode).count() == 2


def test_eligible_items_endpoint_reuses_placeholders_made_by_open(client, make_order):
    order = make_order(lines=(("Cotton Panjabi", 2, 50000),))
    opened = client.post(
        "/api/v1/returns",
        json={
            "order_id": order.id,
            "return_reason": "Too small",
            "return_type": "unwanted",
            "items": [{"order_item_id": order.items[0].id, "quantity": 1}],
        },
    )
    assert opened.status_code == 201

    report = client.get(f"/api/v1/orders/{order.id}/return-eligible-items")
    assert report.status_code == 200
    item = report.json()["data"]["items"][0]
    assert item["quantity_returned"] == 1
    assert len(item["barcodes"]) == 2


def test_order_locks_are_released_after_use(db_session: Session, make_order):
    order = make_order()

    with order_guard(db_session, order.id):
        with order_guard(db_session, order.id):
            assert order.id in locks._order_locks
        assert order.id in locks._order_locks
        db_session.commit()

    assert order.id not in locks._order_locks
