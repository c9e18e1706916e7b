import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from returnflow.api.deps import get_order_gateway
from returnflow.core.exceptions import ExchangeIncompleteError, OrderServiceError, OverReturnError
from returnflow.main import app
from returnflow.models.exchange import ExchangeAttempt, ExchangeRecord, ExchangeStatus
from returnflow.models.order import Order, OrderStatus
from returnflow.models.refund import RefundMethod, RefundRecord
from returnflow.models.return_case import ReturnCase, ReturnStatus
from returnflow.schemas.exchange import ExchangeCreate
from returnflow.services.exchange_coordinator import ExchangeCoordinator
from returnflow.services.order_gateway import LocalOrderGateway


class _CreateFailsGateway(LocalOrderGateway):
    def create_order(self, db, **kwargs):
        raise OrderServiceError("order service timed out")


class _CompleteFailsGateway(LocalOrderGateway):
    def complete_order(self, db, order):
        raise OrderServiceError("payment capture failed")


def _exchange_payload(order, replacement_price: str, quantity: int = 2) -> dict:
    return {
        "order_id": order.id,
        "return_reason": "Wrong size",
        "return_type": "wrong_item",
        "items": [{"order_item_id": order.items[0].id, "quantity": quantity}],
        "replacement_items": [
            {"product_id": 201, "product_name": "Linen Shirt", "quantity": 1, "unit_price": replacement_price}
        ],
    }


def test_scenario_e_refund_exceeds_new_order(client: TestClient, db_session: Session, make_order):
    order = make_order()

    response = client.post("/api/v1/exchanges", json=_exchange_payload(order, "650"))
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["refund_amount"] == 1000
    assert data["new_order_total"] == 650
    assert data["net_amount"] == 350
    assert data["owed_to_customer"] == 350
    assert data["owed_by_customer"] == 0

    case = db_session.query(ReturnCase).filter(ReturnCase.id == data["return_case_id"]).one()
    assert case.status == ReturnStatus.REFUNDED
    credit = db_session.query(RefundRecord).filter(RefundRecord.return_case_id == case.id).one()
    assert credit.method == RefundMethod.EXCHANGE_CREDIT
    assert credit.transaction_reference == f"EXCHANGE-{case.return_number}"

    new_order = db_session.query(Order).filter(Order.id == data["new_order_id"]).one()
    assert new_order.status == OrderStatus.COMPLETED
    assert new_order.paid_amount == 65000

    settled = client.post(f"/api/v1/exchanges/{data['id']}/settle", json={"amounts": {"cash": 350}})
    assert settled.status_code == 200
    assert settled.json()["data"]["surplus_remaining"] == 0
    assert len(settled.json()["data"]["payouts"]) == 1

    again = client.post(f"/api/v1/exchanges/{data['id']}/settle", json={"amounts": {"cash": 1}})
    assert again.status_code == 409

    view = client.get(f"/api/v1/returns/{case.id}/workflow").json()["data"]
    assert view["remaining_amount"] == 0
    assert view["return"]["status"] == "refunded"


def test_scenario_e_new_order_exceeds_refund(client: TestClient, db_session: Session, make_order):
    order = make_order()

    response = client.post("/api/v1/exchanges", json=_exchange_payload(order, "1200"))
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["net_amount"] == -200
    assert data["owed_by_customer"] == 200
    assert data["owed_to_customer"] == 0

    new_order = db_session.query(Order).filter(Order.id == data["new_order_id"]).one()
    assert new_order.outstanding.amount == 20000

    settle = client.post(f"/api/v1/exchanges/{data['id']}/settle", json={"amounts": {"cash": 10}})
    assert settle.status_code == 409


def test_failed_order_creation_surfaces_incomplete_exchange(db_session: Session, make_order):
    order = make_order()
    payload = ExchangeCreate.model_validate(_exchange_payload(order, "650"))

    with pytest.raises(ExchangeIncompleteError) as exc_info:
        ExchangeCoordinator.run(db_session, _CreateFailsGateway(), payload)

    error = exc_info.value
    assert error.refund_id is not None
    case = db_session.query(ReturnCase).filter(ReturnCase.id == error.return_case_id).one()
    assert case.status == ReturnStatus.REFUNDED

    attempt = db_session.query(ExchangeAttempt).filter(ExchangeAttempt.id == error.attempt_id).one()
    assert attempt.status == ExchangeStatus.INCOMPLETE
    assert attempt.new_order_id is None
    assert "timed out" in attempt.last_error
    assert db_session.query(ExchangeRecord).count() == 0

    record = ExchangeCoordinator.resume(db_session, LocalOrderGateway(), attempt.id)
    assert record.net_amount == 35000
    db_session.refresh(attempt)
    assert attempt.status == ExchangeStatus.COMPLETED
    assert db_session.query(RefundRecord).filter(RefundRecord.return_case_id == case.id).count() == 1


def test_resume_after_failed_completion_reuses_created_order(db_session: Session, make_order):
    order = make_order()
    payload = ExchangeCreate.model_validate(_exchange_payload(order, "650"))

    with pytest.raises(ExchangeIncompleteError) as exc_info:
        ExchangeCoordinator.run(db_session, _CompleteFailsGateway(), payload)

    attempt = ExchangeCoordinator.get_attempt(db_session, exc_info.value.attempt_id)
    assert attempt.new_order_id is not None
    orders_before = db_session.query(Order).count()

    record = ExchangeCoordinator.resume(db_session, LocalOrderGateway(), attempt.id)
    assert record.new_order_id == attempt.new_order_id
    assert db_session.query(Order).count() == orders_before

    again = ExchangeCoordinator.resume(db_session, LocalOrderGateway(), attempt.id)
    assert again.id == record.id


def test_incomplete_exchange_is_reported_over_http(client: TestClient, make_order):
    order = make_order()
    app.dependency_overrides[get_order_gateway] = lambda: _CreateFailsGateway()

    response = client.post("/api/v1/exchanges", json=_exchange_payload(order, "650"))
    assert response.status_code == 502
    body = response.json()
    assert body["errors"][0]["code"] == "exchange_incomplete"
    attempt_id = body["errors"][0]["attempt_id"]

    attempt = client.get(f"/api/v1/exchanges/attempts/{attempt_id}").json()["data"]
    assert attempt["status"] == "incomplete"
    assert attempt["refund_id"] == body["errors"][0]["refund_id"]

    app.dependency_overrides[get_order_gateway] = lambda: LocalOrderGateway()
    resumed = client.post(f"/api/v1/exchanges/attempts/{attempt_id}/resume")
    assert resumed.status_code == 200
    assert resumed.json()["data"]["net_amount"] == 350


def test_exchange_aborts_before_refund_when_return_is_invalid(db_session: Session, gateway, make_order):
    order = make_order()
    payload = ExchangeCreate.model_validate(_exchange_payload(order, "650", quantity=5))

    with pytest.raises(OverReturnError):
        ExchangeCoordinator.run(db_session, gateway, payload)

    attempt = db_session.query(ExchangeAttempt).one()
    assert attempt.status == ExchangeStatus.INCOMPLETE
    assert attempt.return_case_id is None
    assert db_session.query(RefundRecord).count() == 0
