from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from app.core.exceptions import AuthError, AuthFailure

ADMIN_MONITORING_ROOM = "admin-monitoring"


def user_room(user_id: str) -> str:
    return f"user-{user_id}"


def order_room(order_id: str) -> str:
    return f"order-{order_id}"


def vendor_dashboard_room(vendor_id: str) -> str:
    return f"vendor-dashboard-{vendor_id}"


class Role(str, Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    ADMIN = "admin"

    @classmethod
    def from_account_type(cls, account_type: str | None) -> "Role":
        try:
            return cls(str(account_type or "").strip().lower())
        except ValueError:
            raise AuthError(AuthFailure.ACCOUNT_INACTIVE, accountType=account_type)


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"



class SessionState(str, Enum):
    ACTIVE = "active"
    EVICTING = "evicting"
    CLOSED = "closed"


@dataclass(eq=False)
class Session:
    """Live binding between one authenticated user and one transport connection.

    Lifecycle is Active -> Evicting -> Closed when the server takes the
    connection away (replacement or admin action), or Active -> Closed on a
    plain client disconnect.
    """

    sid: str
    user_id: str
    role: Role
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    joined_rooms: set[str] = field(default_factory=set)
    state: SessionState = SessionState.ACTIVE
    handlers: Mapping[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    def begin_eviction(self) -> bool:
        """Move to Evicting; False if the session is already on its way out."""
        if self.state is not SessionState.ACTIVE:
            return False
        self.state = SessionState.EVICTING
        return True

    def close(self) -> None:
        self.state = SessionState.CLOSED
        self.joined_rooms.clear()

    def describe(self) -> dict[str, Any]:
        return {
            "sid": self.sid,
            "userId": self.user_id,
            "role": self.role.value,
            "state": self.state.value,
            "rooms": sorted(self.joined_rooms),
            "connectedAt": self.connected_at.isoformat(),
        }
