from datetime import datetime
from uuid import uuid4

from sqlalchemy.orm import Session

from dispatch_api.models import Order, OrderVehicle, Payment
from dispatch_api.schemas import OrderCreate, OrderStatus

# ===============================
# Order CRUD
# ===============================

def get_order(db: Session, order_id: str):
    return db.query(Order).filter(Order.id == order_id).first()


def create_order(db: Session, order: OrderCreate):
    db_order = Order(
        id=str(uuid4()),
        client_id=order.client_id,
        service_id=order.service_id,
        pickup_location=order.pickup_location,
        scheduled_at=order.scheduled_at,
        adults=order.adults or 1,
        children=order.children or 0,
        base_total=order.base_total,
        pricing_multiplier=order.pricing_multiplier,
        final_total=order.final_total,
        platform_amount=order.platform_amount,
        agency_amount=order.agency_amount,
        commission_percent=order.commission_percent,
        status=OrderStatus.AWAITING_PAYMENT.value,
    )
    # 프라이빗 이동이면 차량 라인을 함께 저장
    for vehicle in order.vehicles:
        db_order.vehicles.append(OrderVehicle(**vehicle.model_dump()))
    db.add(db_order)
    db.commit()
    db.refresh(db_order)
    return db_order


def get_open_orders(db: Session, now: datetime):
    return (
        db.query(Order)
        .filter(
            Order.status == OrderStatus.AWAITING_ACCEPTANCE.value,
            Order.agency_id.is_(None),
            Order.accept_expires_at > now,
        )
        .order_by(Order.accept_expires_at.desc())
        .all()
    )


def get_agency_orders(db: Session, agency_id: str):
    return (
        db.query(Order)
        .filter(Order.agency_id == agency_id, Order.status == OrderStatus.CONFIRMED.value)
        .order_by(Order.accepted_at.desc())
        .all()
    )

# ===============================
# Dispute transitions
# ===============================

def confirm_order_if_available(db: Session, order_id: str, agency_id: str, now: datetime) -> int:
    """
    조건부 UPDATE 한 번으로 주문을 확정합니다.
    WHERE 절이 참인 행만 갱신되므로 동시에 들어온 수락 요청 중 하나만 1 을 돌려받습니다.
    """
    matched = (
        db.query(Order)
        .filter(
            Order.id == order_id,
            Order.status == OrderStatus.AWAITING_ACCEPTANCE.value,
            Order.agency_id.is_(None),
            Order.accept_expires_at > now,
        )
        .update(
            {
                Order.status: OrderStatus.CONFIRMED.value,
                Order.agency_id: agency_id,
                Order.accepted_at: now,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return matched


def mark_awaiting_acceptance(db: Session, order_id: str, deadline: datetime):
    """결제 대기 중인 주문만 수락 대기로 전환합니다. 전환되지 않았으면 None."""
    matched = (
        db.query(Order)
        .filter(
            Order.id == order_id,
            Order.status == OrderStatus.AWAITING_PAYMENT.value,
        )
        .update(
            {
                Order.status: OrderStatus.AWAITING_ACCEPTANCE.value,
                Order.accept_expires_at: deadline,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    if not matched:
        return None
    db_order = get_order(db, order_id)
    db.refresh(db_order)
    return db_order

# ===============================
# Payment CRUD
# ===============================

def record_payment(db: Session, order_id: str, status: str, amount, external_payment_id: str = None):
    db_payment = Payment(
        order_id=order_id,
        status=status,
        amount=amount,
        external_payment_id=external_payment_id,
    )
    db.add(db_payment)
    db.commit()
    db.refresh(db_payment)
    return db_payment


def get_payments(db: Session, order_id: str):
    return db.query(Payment).filter(Payment.order_id == order_id).order_by(Payment.id).all()
