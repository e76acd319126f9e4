from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class OrderStatus(str, Enum):
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    AWAITING_ACCEPTANCE = "AWAITING_ACCEPTANCE"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    CANCELED = "CANCELED"


class PaymentStatus(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class CamelModel(BaseModel):
    # 클라이언트는 camelCase JSON 을 주고받는다
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ===============================
# Order Schemas
# ===============================

class OrderVehicleBase(CamelModel):
    vehicle_id: str
    quantity: int = 1
    unit_price_snapshot: float = 0
    line_total: float = 0


class OrderVehicleCreate(OrderVehicleBase):
    pass


class OrderVehicle(OrderVehicleBase):
    model_config = ConfigDict(from_attributes=True)

    id: int


class OrderCreate(CamelModel):
    # 필수 필드 누락은 422 가 아니라 400 으로 응답하기 위해 Optional 로 받는다
    client_id: Optional[str] = None
    service_id: Optional[str] = None
    pickup_location: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    adults: Optional[int] = None
    children: Optional[int] = None
    base_total: float = 0
    pricing_multiplier: float = 1
    final_total: float = 0
    platform_amount: float = 0
    agency_amount: float = 0
    commission_percent: float = 0
    vehicles: List[OrderVehicleCreate] = []


class Order(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    service_id: str
    pickup_location: str
    scheduled_at: datetime
    adults: int
    children: int
    base_total: float
    pricing_multiplier: float
    final_total: float
    platform_amount: float
    agency_amount: float
    commission_percent: float
    status: OrderStatus
    agency_id: Optional[str] = None
    accept_expires_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    vehicles: List[OrderVehicle] = []


# ===============================
# Dispute Schemas
# ===============================

class AcceptRequest(CamelModel):
    agency_id: Optional[str] = None


class AcceptResponse(CamelModel):
    success: bool
    message: str
    order: Optional[Order] = None


class PaymentWebhook(CamelModel):
    order_id: Optional[str] = None
    status: Optional[str] = None
    payment_id: Optional[str] = None


class WebhookResponse(CamelModel):
    success: bool
    message: str


class Payment(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: str
    status: PaymentStatus
    amount: float
    external_payment_id: Optional[str] = None
    created_at: datetime
