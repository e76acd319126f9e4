"""Pytest fixtures for dispatch_api tests."""

import os

# 애플리케이션 모듈을 임포트하기 전에 외부 의존성을 끈다
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["KAFKA_BOOTSTRAP_SERVERS"] = ""
os.environ["OTEL_ENABLED"] = "false"

from datetime import timedelta
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from dispatch_api.database import Base, build_engine, get_db
from dispatch_api.models import Order, utcnow
from dispatch_api.schemas import OrderStatus


class RecordingBroadcaster:
    """Stands in for OrderBroadcaster where no event loop is running."""

    def __init__(self):
        self.published = []

    def publish(self, order):
        self.published.append(order)
        return 1


@pytest.fixture
def engine(tmp_path):
    """File backed SQLite so concurrent sessions each get their own connection."""
    engine = build_engine(f"sqlite:///{tmp_path / 'dispatch.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def make_order(session_factory):
    """Insert an order directly into the store and return its id."""

    def _make_order(status=OrderStatus.AWAITING_ACCEPTANCE, expires_in=timedelta(minutes=20), final_total=440):
        order_id = str(uuid4())
        session = session_factory()
        try:
            order = Order(
                id=order_id,
                client_id="client_1",
                service_id="transfer_jjd",
                pickup_location="Pousada Jeri",
                scheduled_at=utcnow() + timedelta(days=1),
                base_total=400,
                pricing_multiplier=1.1,
                final_total=final_total,
                platform_amount=44,
                agency_amount=396,
                commission_percent=10,
                status=status.value,
                accept_expires_at=utcnow() + expires_in if expires_in is not None else None,
            )
            session.add(order)
            session.commit()
            return order_id
        finally:
            session.close()

    return _make_order


@pytest.fixture
def client(session_factory):
    from dispatch_api.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
