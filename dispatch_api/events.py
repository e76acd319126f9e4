import asyncio
import json
import logging
from datetime import datetime, timezone

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaConnectionError

logger = logging.getLogger(__name__)

ORDER_AWAITING_ACCEPTANCE = "OrderAwaitingAcceptance"
ORDER_ACCEPTED = "OrderAccepted"
PAYMENT_REJECTED = "PaymentRejected"


class OrderEventPublisher:
    """Publishes dispute outcomes to Kafka for downstream consumers.

    With no bootstrap servers configured the publisher stays disabled and
    `send` only logs. Send failures are logged, never raised.
    """

    def __init__(self, bootstrap_servers: str, topic: str, connect_retries: int = 5, retry_delay: float = 5):
        self.bootstrap_servers = bootstrap_servers
        self.topic = topic
        self.connect_retries = connect_retries
        self.retry_delay = retry_delay
        self.producer: AIOKafkaProducer = None

    @property
    def enabled(self) -> bool:
        return self.producer is not None

    async def start(self):
        if not self.bootstrap_servers:
            logger.info("KAFKA_BOOTSTRAP_SERVERS not set. Order events will not be published.")
            return

        for attempt in range(1, self.connect_retries + 1):
            producer = AIOKafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                value_serializer=lambda v: json.dumps(v).encode('utf-8')
            )
            try:
                logger.info(f"Attempting to connect to Kafka producer ({attempt}/{self.connect_retries})...")
                await producer.start()
                self.producer = producer
                logger.info("Kafka Producer connected successfully!")
                return
            except KafkaConnectionError as e:
                logger.error(f"Kafka broker not available for producer: {e}. Retrying in {self.retry_delay} seconds...")
                await producer.stop()
                await asyncio.sleep(self.retry_delay)

        logger.error("Could not connect to Kafka. Order events will not be published.")

    async def stop(self):
        if self.producer:
            await self.producer.stop()
            self.producer = None

    async def send(self, event_type: str, order_id: str, **fields):
        event_data = {
            "event_type": event_type,
            "order_id": order_id,
            **fields,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if not self.enabled:
            logger.debug(f"Kafka disabled. Skipping event {event_type} for order {order_id}.")
            return
        try:
            await self.producer.send_and_wait(self.topic, value=event_data)
            logger.info(f"Event {event_type} for order {order_id} sent to Kafka.")
        except Exception as e:
            logger.error(f"Failed to send event {event_type} for order {order_id} to Kafka: {e}")
