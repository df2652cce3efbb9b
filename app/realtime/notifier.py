"""Outbound push API for business workflows.

Call these after a state change has been committed. Each call is best-effort:
it never raises into the caller and returns an ``EmitResult`` saying whether
the emission went out and whether anyone was connected to receive it. There
is no retry and no queue; events for offline users are dropped.
"""

import functools
import inspect
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from app.core.config import settings
from app.realtime.sessions import ADMIN_MONITORING_ROOM, order_room, user_room, vendor_dashboard_room
from app.services.directory import OrderDirectory

logger = logging.getLogger(__name__)

# (room or None for broadcast, event name, payload)
Emission = tuple[Optional[str], str, dict[str, Any]]


@dataclass(frozen=True)
class EmitResult:
    ok: bool
    delivered: bool = False
    error: Optional[str] = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def best_effort(description: str):
    """Deliver the emissions a method builds; log and swallow any failure.

    The wrapped method is called with the caller's arguments as given
    (positional or keyword) and the wrapper always returns an ``EmitResult``.
    """

    def decorator(func):
        signature = inspect.signature(func)

        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs) -> EmitResult:
            label = "subscribers"
            try:
                bound = signature.bind(self, *args, **kwargs)
                target = next(iter(list(bound.arguments.values())[1:]), None)
                if isinstance(target, str):
                    label = target
                if not self.manager.initialized:
                    logger.warning(f"Realtime subsystem not initialized; dropped {description} for {label}")
                    return EmitResult(ok=False, error="not-initialized")
                emissions = await func(*bound.args, **bound.kwargs)
                delivered = False
                for room, event, payload in emissions:
                    delivered = self.manager.is_room_occupied(room) or delivered
                    await self.manager.emit(event, payload, room=room)
            except Exception as e:
                logger.error(f"Error emitting {description} for {label}: {e}")
                return EmitResult(ok=False, error=str(e))

            if delivered:
                logger.info(f"Emitted {description} for {label}")
            else:
                logger.info(f"Emitted {description} for {label} (no live recipients)")
            return EmitResult(ok=True, delivered=delivered)

        wrapper.__annotations__ = {**func.__annotations__, "return": EmitResult}
        wrapper.__signature__ = signature.replace(return_annotation=EmitResult)
        return wrapper

    return decorator


class NotificationEmitter:
    def __init__(self, manager, order_directory: OrderDirectory | None = None,
                 ready_statuses: frozenset[str] | None = None):
        self.manager = manager
        self.order_directory = order_directory
        self.ready_statuses = (
            ready_statuses if ready_statuses is not None else settings.order_ready_statuses
        )

    def is_ready_status(self, status: str | None) -> bool:
        return str(status or "").lower() in self.ready_statuses

    @best_effort("balance update")
    async def emit_balance_update(self, user_id: str, balance: dict[str, Any]) -> list[Emission]:
        payload = {
            "newBalance": balance["newBalance"],
            "oldBalance": balance.get("oldBalance", balance["newBalance"]),
            "amount": balance.get("amount") or 0,
            "reason": balance.get("reason") or "Balance update",
            "timestamp": _now(),
        }
        return [(user_room(user_id), "balance-updated", payload)]

    @best_effort("payment completion")
    async def emit_payment_completed(self, user_id: str, payment: dict[str, Any]) -> list[Emission]:
        payload = {
            "amount": payment["amount"],
            "newBalance": payment.get("newBalance"),
            "paymentMethod": payment.get("paymentMethod") or "zeffy",
            "transactionId": payment.get("transactionId") or f"txn_{int(time.time() * 1000)}",
            "timestamp": _now(),
        }
        return [(user_room(user_id), "payment-completed", payload)]

    @best_effort("notification")
    async def emit_notification(self, user_id: str, notification: dict[str, Any]) -> list[Emission]:
        payload = {
            "message": notification["message"],
            "type": notification.get("type") or "info",
            "orderId": notification.get("orderId"),
            "data": notification.get("data"),
            "timestamp": _now(),
        }
        return [(user_room(user_id), "new-notification", payload)]

    @best_effort("order status change")
    async def emit_order_status_change(self, order_id: str, status_data: dict[str, Any]) -> list[Emission]:
        data = dict(status_data)
        if (not data.get("userId") or not data.get("itemName")) and self.order_directory is not None:
            order = await self.order_directory.get_by_id(order_id)
            if order is not None:
                data.setdefault("vendorId", order.vendor_id)
                data["userId"] = data.get("userId") or order.customer_id
                data["itemName"] = data.get("itemName") or order.item_summary

        status = data.get("status")
        item_name = data.get("itemName") or "order"
        customer_id = data.get("userId")
        timestamp = _now()

        emissions: list[Emission] = [
            (
                order_room(order_id),
                "order-status-changed",
                {
                    "orderId": order_id,
                    "status": status,
                    "estimatedTime": data.get("estimatedTime"),
                    "itemName": item_name,
                    "userId": customer_id,
                    "vendorId": data.get("vendorId"),
                    "timestamp": timestamp,
                },
            )
        ]
        if not customer_id:
            logger.warning(f"Order {order_id} has no known customer; only the order room is notified")
            return emissions

        emissions.append(
            (
                user_room(customer_id),
                "new-notification",
                {
                    "message": data.get("message") or f"Your {item_name} is {status}!",
                    "type": "order-update",
                    "orderId": order_id,
                    "status": status,
                    "timestamp": timestamp,
                },
            )
        )
        if self.is_ready_status(status):
            emissions.append(
                (
                    user_room(customer_id),
                    "order-ready",
                    {
                        "orderId": order_id,
                        "itemName": item_name,
                        "vendorId": data.get("vendorId"),
                        "message": f"Your {item_name} is ready for pickup!",
                        "timestamp": timestamp,
                    },
                )
            )
        return emissions

    @best_effort("order status update")
    async def emit_order_status_update(
        self, user_id: str, order_id: str, status: str, item_name: str
    ) -> list[Emission]:
        payload = {
            "message": f"Your {item_name} is now {status}!",
            "type": "order-status-update",
            "orderId": order_id,
            "data": {"orderId": order_id, "status": status, "itemName": item_name},
            "timestamp": _now(),
        }
        return [(user_room(user_id), "new-notification", payload)]

    @best_effort("order completion")
    async def emit_order_completion(self, user_id: str, order_id: str, item_name: str) -> list[Emission]:
        timestamp = _now()
        room = user_room(user_id)
        return [
            (
                room,
                "new-notification",
                {
                    "message": f"Your {item_name} order is complete and ready for pickup!",
                    "type": "order-completed",
                    "orderId": order_id,
                    "data": {
                        "orderId": order_id,
                        "status": "completed",
                        "itemName": item_name,
                        "action": "pickup-ready",
                    },
                    "timestamp": timestamp,
                },
            ),
            (
                room,
                "order-ready",
                {
                    "orderId": order_id,
                    "itemName": item_name,
                    "message": f"Your {item_name} is ready for pickup!",
                    "timestamp": timestamp,
                },
            ),
        ]

    @best_effort("order ready")
    async def emit_order_ready(self, order_id: str, order_data: dict[str, Any]) -> list[Emission]:
        item_name = order_data.get("itemName") or "order"
        vendor_name = order_data.get("vendorName") or "the vendor"
        timestamp = _now()
        emissions: list[Emission] = [
            (
                order_room(order_id),
                "order-ready",
                {
                    "orderId": order_id,
                    "itemName": item_name,
                    "vendorId": order_data.get("vendorId"),
                    "vendorName": order_data.get("vendorName"),
                    "message": f"Your {item_name} is ready for pickup!",
                    "timestamp": timestamp,
                },
            )
        ]
        if order_data.get("userId"):
            emissions.append(
                (
                    user_room(order_data["userId"]),
                    "new-notification",
                    {
                        "message": f"Your {item_name} is ready! Please come to {vendor_name} to pick it up.",
                        "type": "order-ready",
                        "orderId": order_id,
                        "data": {
                            "vendorId": order_data.get("vendorId"),
                            "vendorName": order_data.get("vendorName"),
                            "itemName": item_name,
                        },
                        "timestamp": timestamp,
                    },
                )
            )
        return emissions

    @best_effort("new order")
    async def emit_new_order_to_vendor(self, vendor_id: str, order_data: dict[str, Any]) -> list[Emission]:
        notification = {
            "eventType": "new-order",
            "orderId": order_data.get("orderId"),
            "customer": {
                "id": order_data.get("customerId"),
                "name": order_data.get("customerName"),
                "username": order_data.get("customerUsername"),
            },
            "orderDetails": {
                "items": order_data.get("items", []),
                "totalPrice": order_data.get("totalPrice"),
            },
            "timestamp": _now(),
            "message": f"New order from {order_data.get('customerName') or 'a customer'}",
        }
        return [
            (user_room(vendor_id), "new-order-notification", notification),
            (vendor_dashboard_room(vendor_id), "dashboard-update", {"type": "new-order", "data": notification}),
        ]

    @best_effort("admin transaction")
    async def emit_transaction_for_admin(self, transaction: dict[str, Any]) -> list[Emission]:
        payload = {
            "transactionId": transaction.get("id"),
            "userId": transaction.get("userId"),
            "vendorId": transaction.get("vendorId"),
            "amount": transaction.get("amount"),
            "platformFee": transaction.get("platformFee"),
            "type": transaction.get("type"),
            "timestamp": _now(),
        }
        return [(ADMIN_MONITORING_ROOM, "new-transaction", payload)]

    @best_effort("system announcement")
    async def broadcast_announcement(self, announcement: dict[str, Any]) -> list[Emission]:
        payload = {
            "message": announcement["message"],
            "type": announcement.get("type") or "announcement",
            "title": announcement.get("title"),
            "priority": announcement.get("priority") or "normal",
            "timestamp": _now(),
        }
        return [(None, "system-announcement", payload)]
