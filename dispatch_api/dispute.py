"""
Order dispute between agencies.

A paid order is offered to every connected agency for a limited window. The
first agency whose conditional update matches wins it; the store's atomic
UPDATE is the only synchronisation point, no lock is taken here.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dispatch_api import crud, events, schemas
from dispatch_api.broadcaster import OrderBroadcaster
from dispatch_api.config import ACCEPT_WINDOW_MINUTES
from dispatch_api.exceptions import (
    AcceptFailedError,
    AlreadyTakenError,
    ExpiredError,
    OrderNotFoundError,
    ValidationError,
    WebhookFailedError,
)
from dispatch_api.models import utcnow

logger = logging.getLogger(__name__)

APPROVED = "approved"


@dataclass
class DisputeOutcome:
    message: str
    order: Optional[schemas.Order] = None
    event_type: Optional[str] = None
    amount: float = 0


def accept_order(db: Session, order_id: str, agency_id: Optional[str], now: datetime = None) -> DisputeOutcome:
    """Try to win the order for `agency_id`.

    Raises AlreadyTakenError, ExpiredError, OrderNotFoundError or
    AcceptFailedError when the conditional update does not match.
    """
    if not agency_id:
        raise ValidationError("Missing agencyId")
    now = now or utcnow()

    try:
        matched = crud.confirm_order_if_available(db, order_id, agency_id, now)
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"Store error while agency {agency_id} accepted order {order_id}")
        raise AcceptFailedError(status_code=500)

    if matched:
        logger.info(f"Agency {agency_id} won the dispute for order {order_id}.")
        # 이미 커밋된 승리이므로 재조회 실패는 응답 본문에만 영향을 준다
        try:
            order = schemas.Order.model_validate(crud.get_order(db, order_id))
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Order {order_id} confirmed for agency {agency_id} but could not be reloaded")
            order = None
        return DisputeOutcome("Order confirmed.", order=order, event_type=events.ORDER_ACCEPTED)

    # 갱신된 행이 없으면 이유를 구분하기 위해서만 조회한다
    try:
        db_order = crud.get_order(db, order_id)
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"Store error while classifying failed acceptance of order {order_id}")
        raise AcceptFailedError(status_code=500)

    if db_order is None:
        logger.warning(f"Agency {agency_id} tried to accept unknown order {order_id}.")
        raise OrderNotFoundError()
    if db_order.status == schemas.OrderStatus.CONFIRMED.value:
        logger.info(f"Agency {agency_id} lost the dispute for order {order_id} to {db_order.agency_id}.")
        raise AlreadyTakenError()
    if db_order.accept_expires_at is not None and db_order.accept_expires_at <= now:
        logger.info(f"Agency {agency_id} arrived after the acceptance window of order {order_id}.")
        raise ExpiredError()

    logger.warning(f"Order {order_id} is not open for acceptance (status {db_order.status}).")
    raise AcceptFailedError()


def confirm_payment(
    db: Session,
    broadcaster: OrderBroadcaster,
    payload: schemas.PaymentWebhook,
    now: datetime = None,
    window_minutes: int = ACCEPT_WINDOW_MINUTES,
) -> DisputeOutcome:
    """Handle the payment provider callback.

    An approved payment opens the dispute: the order gets its acceptance
    deadline and is broadcast to every connected agency. Any other status is
    only recorded. Duplicate approvals are acknowledged without side effects.
    """
    if not payload.order_id or not payload.status:
        raise ValidationError("Invalid webhook payload")
    now = now or utcnow()
    order_id = payload.order_id

    try:
        if crud.get_order(db, order_id) is None:
            logger.warning(f"Payment callback for unknown order {order_id}.")
            raise OrderNotFoundError()

        if payload.status != APPROVED:
            crud.record_payment(db, order_id, schemas.PaymentStatus.REJECTED.value, 0, payload.payment_id)
            logger.info(f"Payment for order {order_id} rejected with status '{payload.status}'.")
            return DisputeOutcome("Payment rejection recorded.", event_type=events.PAYMENT_REJECTED)

        deadline = now + timedelta(minutes=window_minutes)
        db_order = crud.mark_awaiting_acceptance(db, order_id, deadline)
        if db_order is None:
            logger.warning(f"Duplicate payment approval for order {order_id} ignored.")
            return DisputeOutcome("Payment already processed.")

        crud.record_payment(
            db,
            order_id,
            schemas.PaymentStatus.APPROVED.value,
            db_order.final_total,
            payload.payment_id or "mock_payment",
        )
        order = schemas.Order.model_validate(db_order)
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"Store error while processing payment callback for order {order_id}")
        raise WebhookFailedError()

    logger.info(f"Order {order_id} awaiting acceptance until {deadline.isoformat()}.")
    broadcaster.publish(order)
    return DisputeOutcome(
        "Payment validated and dispute started.",
        order=order,
        event_type=events.ORDER_AWAITING_ACCEPTANCE,
        amount=order.final_total,
    )
