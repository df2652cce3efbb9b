from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from app.realtime.sessions import OrderStatus


class EventPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class EmptyPayload(EventPayload):
    pass


class UserRoomPayload(EventPayload):
    userId: str = Field(min_length=1)


class OrderRoomPayload(EventPayload):
    orderId: str = Field(min_length=1)


class OrderStatusUpdatePayload(EventPayload):
    orderId: str = Field(min_length=1)
    status: OrderStatus
    estimatedTime: Optional[Union[int, str]] = None
    message: Optional[str] = Field(default=None, max_length=500)


class CustomerMessagePayload(EventPayload):
    userId: str = Field(min_length=1)
    message: str = Field(min_length=1, max_length=1000)
    orderId: Optional[str] = None


class AnnouncementPayload(EventPayload):
    message: str = Field(min_length=1, max_length=1000)
    type: str = "announcement"
