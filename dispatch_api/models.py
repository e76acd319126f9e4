from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import relationship

from dispatch_api.database import Base


def utcnow() -> datetime:
    # DB 에는 timezone 없는 UTC 로 저장한다
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, index=True)
    client_id = Column(String, nullable=False)
    service_id = Column(String, nullable=False)
    pickup_location = Column(String, nullable=False)
    scheduled_at = Column(DateTime, nullable=False)
    adults = Column(Integer, default=1, nullable=False)
    children = Column(Integer, default=0, nullable=False)

    # 가격 스냅샷 (가격 엔진에서 계산되어 들어옴)
    base_total = Column(Numeric(10, 2), default=0, nullable=False)
    pricing_multiplier = Column(Numeric(6, 3), default=1, nullable=False)
    final_total = Column(Numeric(10, 2), default=0, nullable=False)
    platform_amount = Column(Numeric(10, 2), default=0, nullable=False)
    agency_amount = Column(Numeric(10, 2), default=0, nullable=False)
    commission_percent = Column(Numeric(5, 2), default=0, nullable=False)

    # AWAITING_PAYMENT, AWAITING_ACCEPTANCE, CONFIRMED, REJECTED, CANCELED
    status = Column(String, default="AWAITING_PAYMENT", nullable=False, index=True)
    agency_id = Column(String, nullable=True, index=True)
    accept_expires_at = Column(DateTime, nullable=True)
    accepted_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    vehicles = relationship("OrderVehicle", back_populates="order", lazy="selectin")
    payments = relationship("Payment", back_populates="order")


class OrderVehicle(Base):
    __tablename__ = "order_vehicles"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    vehicle_id = Column(String, nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    unit_price_snapshot = Column(Numeric(10, 2), default=0, nullable=False)
    line_total = Column(Numeric(10, 2), default=0, nullable=False)

    order = relationship("Order", back_populates="vehicles")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    status = Column(String, nullable=False)  # APPROVED, REJECTED
    amount = Column(Numeric(10, 2), default=0, nullable=False)
    external_payment_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    order = relationship("Order", back_populates="payments")
