from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from dispatch_api import dispute, schemas
from dispatch_api.broadcaster import OrderBroadcaster
from dispatch_api.config import ACCEPT_WINDOW_MINUTES
from dispatch_api.database import get_db
from dispatch_api.dependencies import get_broadcaster, get_event_publisher
from dispatch_api.events import OrderEventPublisher
from dispatch_api.exceptions import DispatchError

router = APIRouter(
    prefix="/api/payments",
    tags=["payments"],
)


@router.post("/webhook", response_model=schemas.WebhookResponse)
async def payment_webhook(
    payload: Optional[schemas.PaymentWebhook] = None,
    db: Session = Depends(get_db),
    broadcaster: OrderBroadcaster = Depends(get_broadcaster),
    publisher: OrderEventPublisher = Depends(get_event_publisher),
):
    """
    결제사 콜백. 승인되면 주문을 수락 대기로 전환하고 연결된 모든 에이전시에 전송합니다.
    예: {"orderId": "...", "status": "approved", "paymentId": "mp_123"}
    """
    payload = payload or schemas.PaymentWebhook()
    try:
        outcome = await run_in_threadpool(
            dispute.confirm_payment, db, broadcaster, payload, window_minutes=ACCEPT_WINDOW_MINUTES
        )
    except DispatchError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

    if outcome.event_type:
        await publisher.send(outcome.event_type, payload.order_id, payment_id=payload.payment_id, amount=outcome.amount)
    return {"success": True, "message": outcome.message}
