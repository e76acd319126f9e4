import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from dispatch_api import crud, dispute, schemas
from dispatch_api.database import get_db
from dispatch_api.dependencies import get_event_publisher
from dispatch_api.events import OrderEventPublisher
from dispatch_api.exceptions import DispatchError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/orders",
    tags=["orders"],
)

# ===============================
# Order Endpoints
# ===============================

@router.post("", response_model=schemas.Order, status_code=status.HTTP_201_CREATED)
def create_order(order: schemas.OrderCreate, db: Session = Depends(get_db)):
    if not all([order.client_id, order.service_id, order.pickup_location, order.scheduled_at]):
        raise HTTPException(status_code=400, detail="Missing required fields")
    try:
        db_order = crud.create_order(db=db, order=order)
    except Exception as e:
        db.rollback()
        logger.error(f"Order creation failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to create order")
    logger.info(f"Order {db_order.id} created with AWAITING_PAYMENT status.")
    return db_order


@router.get("/{order_id}", response_model=schemas.Order)
def read_order(order_id: str, db: Session = Depends(get_db)):
    db_order = crud.get_order(db, order_id=order_id)
    if db_order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return db_order


@router.get("/{order_id}/payments", response_model=List[schemas.Payment])
def read_order_payments(order_id: str, db: Session = Depends(get_db)):
    if crud.get_order(db, order_id=order_id) is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return crud.get_payments(db, order_id=order_id)

# ===============================
# Dispute Endpoints
# ===============================

@router.post("/{order_id}/accept", response_model=schemas.AcceptResponse)
async def accept_order(
    order_id: str,
    body: Optional[schemas.AcceptRequest] = None,
    db: Session = Depends(get_db),
    publisher: OrderEventPublisher = Depends(get_event_publisher),
):
    """
    에이전시의 주문 수락 요청. 가장 먼저 조건부 UPDATE 에 성공한 에이전시만 주문을 가져갑니다.
    예: {"agencyId": "agency_demo_1"}
    """
    agency_id = body.agency_id if body else None
    try:
        outcome = await run_in_threadpool(dispute.accept_order, db, order_id, agency_id)
    except DispatchError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

    await publisher.send(outcome.event_type, order_id, agency_id=agency_id)
    return {"success": True, "message": outcome.message, "order": outcome.order}
