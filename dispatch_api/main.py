import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from dispatch_api import models  # noqa: F401  테이블 등록
from dispatch_api.broadcaster import OrderBroadcaster
from dispatch_api.config import (
    KAFKA_BOOTSTRAP_SERVERS,
    KAFKA_CONNECT_RETRIES,
    ORDER_EVENTS_TOPIC,
    OTEL_ENABLED,
    SUBSCRIBER_QUEUE_SIZE,
)
from dispatch_api.database import Base, engine
from dispatch_api.events import OrderEventPublisher
from dispatch_api.routers import agencies, orders, payments
from common.tracing import setup_telemetry # common 모듈 임포트

# 로거 설정
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if OTEL_ENABLED:
        logger.info("Setting up OpenTelemetry...")
        setup_telemetry(app, engine)
        logger.info("OpenTelemetry setup complete.")

    logger.info("Creating database tables for Dispatch API...")
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Dispatch API database tables created successfully.")
    except Exception as e:
        logger.error(f"Error creating Dispatch API database tables: {e}")

    # 프로세스당 하나의 브로드캐스터. 다른 인스턴스에 연결된 에이전시에는 전달되지 않는다
    app.state.broadcaster = OrderBroadcaster(queue_size=SUBSCRIBER_QUEUE_SIZE)
    app.state.event_publisher = OrderEventPublisher(
        KAFKA_BOOTSTRAP_SERVERS, ORDER_EVENTS_TOPIC, connect_retries=KAFKA_CONNECT_RETRIES
    )
    await app.state.event_publisher.start()
    yield
    # 애플리케이션 종료 시 프로듀서 닫기
    await app.state.event_publisher.stop()
    logger.info("Dispatch API shut down gracefully.")

app = FastAPI(lifespan=lifespan)

app.include_router(orders.router)
app.include_router(payments.router)
app.include_router(agencies.router)

@app.get("/")
def health_check(request: Request):
    return {
        "status": "ok",
        "message": "Dispatch API is running.",
        "subscribers": request.app.state.broadcaster.subscriber_count,
    }
