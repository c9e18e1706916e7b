from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from returnflow.api.deps import OrderGateway, get_db, get_order_gateway
from returnflow.core.config import settings
from returnflow.core.rate_limiter import limiter
from returnflow.schemas.exchange import ExchangeAttemptResponse, ExchangeCreate, ExchangeResponse, ExchangeSettle
from returnflow.services.exchange_coordinator import ExchangeCoordinator
from returnflow.utils.response import success

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
@router.post("/", status_code=status.HTTP_201_CREATED, include_in_schema=False)
@limiter.limit(settings.MUTATION_RATE_LIMIT)
def create_exchange(
    request: Request,
    payload: ExchangeCreate,
    db: Session = Depends(get_db),
    gateway: OrderGateway = Depends(get_order_gateway),
):
    """Return units and place the replacement order against the refund."""
    record = ExchangeCoordinator.run(db, gateway, payload)
    return success(data=ExchangeResponse.from_record(record), message="Exchange completed")


@router.get("/attempts/{attempt_id}")
def get_exchange_attempt(attempt_id: int, db: Session = Depends(get_db)):
    attempt = ExchangeCoordinator.get_attempt(db, attempt_id)
    return success(data=ExchangeAttemptResponse.from_attempt(attempt), message="Exchange attempt retrieved")


@router.post("/attempts/{attempt_id}/resume")
@limiter.limit(settings.MUTATION_RATE_LIMIT)
def resume_exchange(
    request: Request,
    attempt_id: int,
    db: Session = Depends(get_db),
    gateway: OrderGateway = Depends(get_order_gateway),
):
    record = ExchangeCoordinator.resume(db, gateway, attempt_id)
    return success(data=ExchangeResponse.from_record(record), message="Exchange completed")


@router.get("/{exchange_id}")
def get_exchange(exchange_id: int, db: Session = Depends(get_db)):
    record = ExchangeCoordinator.get_exchange(db, exchange_id)
    return success(data=ExchangeResponse.from_record(record), message="Exchange retrieved")


@router.post("/{exchange_id}/settle")
@limiter.limit(settings.MUTATION_RATE_LIMIT)
def settle_exchange(
    request: Request,
    exchange_id: int,
    payload: ExchangeSettle,
    db: Session = Depends(get_db),
):
    """Pay out what the customer is owed when the replacement cost less."""
    ExchangeCoordinator.settle(db, exchange_id, payload)
    record = ExchangeCoordinator.get_exchange(db, exchange_id)
    return success(data=ExchangeResponse.from_record(record), message="Exchange surplus paid")
