"""Inbound Socket.IO events, gated per role.

Each role gets a fixed event table built once; a session receives its table at
connect time, so an event outside the caller's table never reaches a handler.
Every dispatch runs rate limit -> role table -> payload validation -> handler
(which does its own ownership check), and any failure is answered with an
``error {code, message}`` event instead of propagating into the transport.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import (
    EventNotAllowedError,
    OwnershipError,
    RealtimeError,
    UpstreamError,
    ValidationError,
)
from app.realtime.schemas import (
    AnnouncementPayload,
    CustomerMessagePayload,
    EmptyPayload,
    EventPayload,
    OrderRoomPayload,
    OrderStatusUpdatePayload,
    UserRoomPayload,
)
from app.realtime.sessions import (
    ADMIN_MONITORING_ROOM,
    Role,
    Session,
    order_room,
    user_room,
)
from app.services.directory import OrderDirectory, OrderRecord

logger = logging.getLogger(__name__)

INBOUND_EVENTS = (
    "join-user-room",
    "leave-user-room",
    "join-order-room",
    "leave-order-room",
    "track-my-orders",
    "update-order-status",
    "send-customer-message",
    "broadcast-announcement",
    "monitor-transactions",
)


@dataclass(frozen=True)
class Route:
    schema: type[EventPayload]
    handler: Callable[[Session, Any], Awaitable[None]]

    def parse(self, data: Any) -> EventPayload:
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValidationError("payload", "Event payload must be an object")
        try:
            return self.schema.model_validate(data)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first.get("loc", ())) or "payload"
            raise ValidationError(field, f"{field}: {first.get('msg', 'invalid value')}")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class EventRouter:
    def __init__(self, manager, notifier, order_directory: OrderDirectory):
        self.manager = manager
        self.notifier = notifier
        self.order_directory = order_directory

        baseline = {
            "join-user-room": Route(UserRoomPayload, self.join_user_room),
            "leave-user-room": Route(UserRoomPayload, self.leave_user_room),
            "join-order-room": Route(OrderRoomPayload, self.join_order_room),
            "leave-order-room": Route(OrderRoomPayload, self.leave_order_room),
        }
        self._tables: dict[Role, Mapping[str, Route]] = {
            Role.CUSTOMER: {
                **baseline,
                "track-my-orders": Route(EmptyPayload, self.track_my_orders),
            },
            Role.VENDOR: {
                **baseline,
                "update-order-status": Route(OrderStatusUpdatePayload, self.update_order_status),
                "send-customer-message": Route(CustomerMessagePayload, self.send_customer_message),
            },
            Role.ADMIN: {
                **baseline,
                "broadcast-announcement": Route(AnnouncementPayload, self.broadcast_announcement),
                "monitor-transactions": Route(EmptyPayload, self.monitor_transactions),
            },
        }

    def handlers_for(self, role: Role) -> Mapping[str, Route]:
        return self._tables[role]

    async def dispatch(self, sid: str, event: str, data: Any = None) -> bool:
        """Run one inbound event; returns True when the handler completed."""
        session = self.manager.get_session(sid)
        if session is None or not session.is_active:
            logger.debug(f"Ignoring {event} from unknown or closing socket {sid}")
            return False

        try:
            self.manager.rate_limiter.check(session.user_id)
            route = session.handlers.get(event)
            if route is None:
                raise EventNotAllowedError(
                    f"Event '{event}' is not available for {session.role.value} accounts"
                )
            payload = route.parse(data)
            await route.handler(session, payload)
            return True
        except RealtimeError as e:
            logger.warning(f"Rejected {event} from user {session.user_id}: {e.code} {e.message}")
            await self._emit_error(sid, e)
        except Exception as e:
            logger.exception(f"Unhandled error processing {event} for user {session.user_id}: {e}")
            await self._emit_error(
                sid, RealtimeError(f"Failed to process {event}", code="INTERNAL_ERROR")
            )
        return False

    async def _emit_error(self, sid: str, error: RealtimeError) -> None:
        try:
            await self.manager.send(sid, "error", error.to_payload())
        except Exception as e:
            logger.error(f"Could not deliver error event to socket {sid}: {e}")

    # ─── Collaborator access ─────────────────────────────────────────────────

    async def _fetch_order(self, order_id: str) -> Optional[OrderRecord]:
        try:
            return await self.order_directory.get_by_id(order_id)
        except Exception as e:
            logger.error(f"Order lookup failed for {order_id}: {e}")
            raise UpstreamError("Order service unavailable") from e

    async def verify_order_access(self, session: Session, order_id: str) -> Optional[OrderRecord]:
        """Customers reach their own orders, vendors the orders they fulfil, admins all."""
        if session.role is Role.ADMIN:
            return None
        order = await self._fetch_order(order_id)
        if order is None:
            raise OwnershipError("No permission to access this order")
        if session.role is Role.CUSTOMER and order.customer_id == session.user_id:
            return order
        if session.role is Role.VENDOR and order.vendor_id == session.user_id:
            return order
        raise OwnershipError("No permission to access this order")

    # ─── Baseline handlers ───────────────────────────────────────────────────

    async def join_user_room(self, session: Session, payload: UserRoomPayload) -> None:
        if payload.userId != session.user_id:
            raise OwnershipError("Cannot join another user's room")
        room = user_room(payload.userId)
        await self.manager.join_room(session, room)
        await self.manager.send(session.sid, "room-joined", {"room": room})
        logger.info(f"User {session.user_id} joined their user room")

    async def leave_user_room(self, session: Session, payload: UserRoomPayload) -> None:
        room = user_room(payload.userId)
        await self.manager.leave_room(session, room)
        await self.manager.send(session.sid, "room-left", {"room": room})

    async def join_order_room(self, session: Session, payload: OrderRoomPayload) -> None:
        await self.verify_order_access(session, payload.orderId)
        room = order_room(payload.orderId)
        await self.manager.join_room(session, room)
        await self.manager.send(session.sid, "room-joined", {"room": room})
        logger.info(f"User {session.user_id} joined order room {payload.orderId}")

    async def leave_order_room(self, session: Session, payload: OrderRoomPayload) -> None:
        room = order_room(payload.orderId)
        await self.manager.leave_room(session, room)
        await self.manager.send(session.sid, "room-left", {"room": room})

    # ─── Customer ────────────────────────────────────────────────────────────

    async def track_my_orders(self, session: Session, payload: EmptyPayload) -> None:
        try:
            orders = await self.order_directory.get_active_for_customer(session.user_id)
        except Exception as e:
            logger.error(f"Active order lookup failed for user {session.user_id}: {e}")
            raise UpstreamError("Failed to track orders") from e

        for order in orders:
            await self.manager.join_room(session, order_room(order.id))

        await self.manager.send(
            session.sid,
            "tracking-orders",
            {
                "orderIds": [o.id for o in orders],
                "message": "Now tracking your active orders",
            },
        )

    # ─── Vendor ──────────────────────────────────────────────────────────────

    async def update_order_status(self, session: Session, payload: OrderStatusUpdatePayload) -> None:
        order = await self.verify_order_access(session, payload.orderId)
        result = await self.notifier.emit_order_status_change(
            order.id,
            {
                "status": payload.status.value,
                "estimatedTime": payload.estimatedTime,
                "message": payload.message,
                "itemName": order.item_summary,
                "userId": order.customer_id,
                "vendorId": order.vendor_id,
            },
        )
        if not result.ok:
            raise UpstreamError("Failed to update order status")
        logger.info(f"Order {order.id} status updated to {payload.status.value} by vendor {session.user_id}")

    async def send_customer_message(self, session: Session, payload: CustomerMessagePayload) -> None:
        await self.manager.emit(
            "vendor-message",
            {
                "vendorId": session.user_id,
                "message": payload.message,
                "orderId": payload.orderId,
                "timestamp": _now(),
            },
            room=user_room(payload.userId),
        )
        await self.manager.send(
            session.sid, "message-sent", {"userId": payload.userId, "message": payload.message}
        )

    # ─── Admin ───────────────────────────────────────────────────────────────

    async def broadcast_announcement(self, session: Session, payload: AnnouncementPayload) -> None:
        await self.manager.emit(
            "admin-announcement",
            {
                "message": payload.message,
                "type": payload.type,
                "timestamp": _now(),
                "adminId": session.user_id,
            },
        )
        logger.info(f"Admin {session.user_id} broadcast: {payload.message}")

    async def monitor_transactions(self, session: Session, payload: EmptyPayload) -> None:
        await self.manager.join_room(session, ADMIN_MONITORING_ROOM)
        await self.manager.send(session.sid, "room-joined", {"room": ADMIN_MONITORING_ROOM})
