from dataclasses import dataclass

from app.realtime.connection_manager import ConnectionManager
from app.realtime.notifier import EmitResult, NotificationEmitter
from app.realtime.rate_limiter import RateLimiter
from app.realtime.router import EventRouter
from app.realtime.sessions import Role, Session, SessionState
from app.services.directory import OrderDirectory, UserDirectory


@dataclass
class Realtime:
    manager: ConnectionManager
    router: EventRouter
    notifier: NotificationEmitter


def build_realtime(
    user_directory: UserDirectory,
    order_directory: OrderDirectory,
    rate_limiter: RateLimiter | None = None,
    ready_statuses: frozenset[str] | None = None,
) -> Realtime:
    """Wire one connection manager with its router and emitter."""
    manager = ConnectionManager(user_directory, rate_limiter=rate_limiter)
    notifier = NotificationEmitter(manager, order_directory, ready_statuses=ready_statuses)
    router = EventRouter(manager, notifier, order_directory)
    manager.use_router(router)
    return Realtime(manager=manager, router=router, notifier=notifier)


__all__ = [
    "ConnectionManager",
    "EmitResult",
    "EventRouter",
    "NotificationEmitter",
    "RateLimiter",
    "Realtime",
    "Role",
    "Session",
    "SessionState",
    "build_realtime",
]
