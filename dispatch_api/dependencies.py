from fastapi import Request

from dispatch_api.broadcaster import OrderBroadcaster
from dispatch_api.events import OrderEventPublisher


def get_broadcaster(request: Request) -> OrderBroadcaster:
    return request.app.state.broadcaster


def get_event_publisher(request: Request) -> OrderEventPublisher:
    return request.app.state.event_publisher
