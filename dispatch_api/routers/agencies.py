import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from dispatch_api import crud, schemas
from dispatch_api.broadcaster import CLOSED, PING_FRAME, OrderBroadcaster
from dispatch_api.config import SSE_KEEPALIVE_SECONDS
from dispatch_api.database import get_db
from dispatch_api.dependencies import get_broadcaster
from dispatch_api.models import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/agencies",
    tags=["agencies"],
)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def order_event_stream(request: Request, broadcaster: OrderBroadcaster, keepalive: float = SSE_KEEPALIVE_SECONDS):
    """새 주문을 SSE 프레임으로 흘려보냅니다. 연결이 끊기거나 구독이 끊기면 종료합니다."""
    subscriber = broadcaster.subscribe()
    try:
        yield PING_FRAME
        while True:
            # 브로드캐스터가 끊은 구독은 남은 프레임만 보내고 종료한다
            if subscriber.closed and subscriber.queue.empty():
                break
            try:
                frame = await asyncio.wait_for(subscriber.queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                if await request.is_disconnected():
                    break
                yield PING_FRAME
                continue
            if frame is CLOSED:
                break
            yield frame
    finally:
        broadcaster.unsubscribe(subscriber)


@router.get("/orders/live")
async def stream_live_orders(request: Request, broadcaster: OrderBroadcaster = Depends(get_broadcaster)):
    return StreamingResponse(
        order_event_stream(request, broadcaster),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/orders/open", response_model=List[schemas.Order])
def read_open_orders(db: Session = Depends(get_db)):
    return crud.get_open_orders(db, now=utcnow())


@router.get("/{agency_id}/orders", response_model=List[schemas.Order])
def read_agency_orders(agency_id: str, db: Session = Depends(get_db)):
    return crud.get_agency_orders(db, agency_id=agency_id)
