"""
In-process fan-out of newly disputable orders to connected agencies.

Each open SSE connection owns a Subscriber. Publishing is best-effort and
at-most-once: frames are dropped for subscribers that cannot take them, and
such subscribers are unregistered. Only agencies connected to this process
see the events.
"""

import asyncio
import logging
import threading
from typing import Callable, List, Optional
from uuid import uuid4

from pydantic import BaseModel

logger = logging.getLogger(__name__)

PING_FRAME = ": ping\n\n"

# 구독 종료를 reader 에게 알리는 큐 항목
CLOSED = None


def encode_event(payload: BaseModel) -> str:
    return f"data: {payload.model_dump_json(by_alias=True)}\n\n"


class SubscriberClosed(Exception):
    pass


class Subscriber:
    """One agency connection. Frames are read by the SSE handler from `queue`.

    After `close()` the queue ends with `CLOSED` (or simply drains, if it was
    full) so the SSE handler stops and the client reconnects.
    """

    def __init__(
        self,
        maxsize: int = 100,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        on_overflow: Optional[Callable[["Subscriber"], None]] = None,
    ):
        self.id = uuid4().hex[:12]
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._loop = loop or asyncio.get_running_loop()
        self._on_overflow = on_overflow
        self.closed = False

    def deliver(self, frame: str) -> None:
        if self.closed:
            raise SubscriberClosed(f"subscriber {self.id} is closed")
        if self._loop.is_closed():
            raise SubscriberClosed(f"event loop of subscriber {self.id} is closed")
        if self.queue.full():
            raise asyncio.QueueFull()

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self.queue.put_nowait(frame)
        else:
            # 다른 스레드(threadpool)에서 호출된 경우 소유 루프에 넘긴다
            self._loop.call_soon_threadsafe(self._put_from_loop, frame)

    def _put_from_loop(self, frame: str) -> None:
        if self.closed:
            return
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            # 스레드에서 연달아 publish 되면 full() 검사 이후에 넘칠 수 있다
            logger.warning(f"Subscriber {self.id} queue full. Dropping subscriber.")
            if self._on_overflow is not None:
                self._on_overflow(self)
            else:
                self.close()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._wake_reader)

    def _wake_reader(self) -> None:
        try:
            self.queue.put_nowait(CLOSED)
        except asyncio.QueueFull:
            # 가득 찬 큐는 reader 가 비우는 즉시 closed 를 확인한다
            pass


class OrderBroadcaster:
    def __init__(self, queue_size: int = 100):
        self._queue_size = queue_size
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @property
    def subscribers(self) -> List[Subscriber]:
        with self._lock:
            return list(self._subscribers)

    def subscribe(self) -> Subscriber:
        subscriber = Subscriber(maxsize=self._queue_size, on_overflow=self.unsubscribe)
        with self._lock:
            self._subscribers.append(subscriber)
            count = len(self._subscribers)
        logger.info(f"Subscriber {subscriber.id} connected. Active subscribers: {count}")
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        subscriber.close()
        with self._lock:
            if subscriber not in self._subscribers:
                return
            self._subscribers.remove(subscriber)
            count = len(self._subscribers)
        logger.info(f"Subscriber {subscriber.id} disconnected. Active subscribers: {count}")

    def publish(self, order: BaseModel) -> int:
        """Send the order to every current subscriber. Never raises."""
        try:
            frame = encode_event(order)
        except Exception:
            logger.exception("Failed to serialize order for broadcast")
            return 0

        with self._lock:
            targets = list(self._subscribers)

        delivered = 0
        for subscriber in targets:
            try:
                subscriber.deliver(frame)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping subscriber {subscriber.id} after failed write: {e!r}")
                self.unsubscribe(subscriber)

        logger.info(f"Broadcast order {getattr(order, 'id', '?')} to {delivered}/{len(targets)} subscribers.")
        return delivered
