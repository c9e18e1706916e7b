import os
import tempfile
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

os.environ["ENVIRONMENT"] = "development"
os.environ.setdefault("DATABASE_URL", "sqlite:///./returnflow-test.db")

import returnflow.db.base  # noqa: F401,E402
from returnflow.api.deps import get_order_gateway  # noqa: E402
from returnflow.db.base_class import Base  # noqa: E402
from returnflow.db.session import get_db  # noqa: E402
from returnflow.main import app  # noqa: E402
from returnflow.models.inventory import StockBatch  # noqa: E402
from returnflow.models.order import Order, OrderItem, OrderStatus  # noqa: E402
from returnflow.services.barcode_ledger import BarcodeLedger  # noqa: E402
from returnflow.services.order_gateway import LocalOrderGateway  # noqa: E402


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_file.close()

    engine = create_engine(
        f"sqlite:///{db_file.name}",
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_file.name)


@pytest.fixture()
def gateway() -> LocalOrderGateway:
    return LocalOrderGateway()


@pytest.fixture()
def client(db_session: Session, gateway: LocalOrderGateway) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_order_gateway] = lambda: gateway
    app.state.limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def make_order(db_session: Session):
    """
    Build a completed order in the local store.

    ``lines`` are ``(product_name, quantity, unit_price_minor)`` tuples;
    each line gets its own stock batch unless ``with_batches`` is off.
    ``paid`` defaults to the order total.
    """
    counter = {"value": 0}

    def _make(
        lines=(("Cotton Panjabi", 3, 50000), ("Silk Saree", 1, 100000)),
        paid=None,
        status=OrderStatus.COMPLETED,
        with_batches=True,
        barcodes=None,
        stock=10,
    ) -> Order:
        counter["value"] += 1
        order = Order(
            order_number=f"ORD-TEST-{counter['value']:04d}",
            customer_id=7,
            store_id=1,
            currency="BDT",
            status=status,
        )
        total = 0
        for index, (name, quantity, unit_price) in enumerate(lines, start=1):
            batch_id = None
            if with_batches:
                batch = StockBatch(product_id=100 + index, store_id=1, quantity=stock)
                db_session.add(batch)
                db_session.flush()
                batch_id = batch.id
            order.items.append(
                OrderItem(
                    product_id=100 + index,
                    batch_id=batch_id,
                    product_name=name,
                    quantity=quantity,
                    unit_price=unit_price,
                    total_price=unit_price * quantity,
                )
            )
            total += unit_price * quantity
        order.total_amount = total
        order.paid_amount = total if paid is None else paid
        db_session.add(order)
        db_session.flush()

        if barcodes:
            for item, codes in zip(order.items, barcodes):
                BarcodeLedger.register_barcodes(item, codes)

        db_session.commit()
        db_session.refresh(order)
        return order

    return _make
