"""User and order lookups consumed by the realtime subsystem.

The realtime core only depends on the ``UserDirectory`` / ``OrderDirectory``
protocols; the SQLAlchemy implementations below run their blocking queries in
the threadpool so callers can ``await`` them.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import sessionmaker

from app.core.db import SessionLocal
from app.core.models import Order, User

logger = logging.getLogger(__name__)

ACTIVE_ORDER_STATUSES = ("pending", "confirmed", "preparing", "ready")


@dataclass(frozen=True)
class UserRecord:
    id: str
    type: str
    active: bool
    name: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class OrderRecord:
    id: str
    customer_id: str
    vendor_id: str
    status: str
    item_summary: str


class UserDirectory(Protocol):
    async def get_by_id(self, user_id: str) -> Optional[UserRecord]: ...


class OrderDirectory(Protocol):
    async def get_by_id(self, order_id: str) -> Optional[OrderRecord]: ...

    async def get_active_for_customer(self, customer_id: str) -> list[OrderRecord]: ...


def _to_user_record(user: User) -> UserRecord:
    return UserRecord(
        id=str(user.id),
        type=user.type,
        active=(user.status or "active") == "active",
        name=user.name,
        email=user.email,
    )


def _to_order_record(order: Order) -> OrderRecord:
    return OrderRecord(
        id=str(order.id),
        customer_id=str(order.customer_id),
        vendor_id=str(order.vendor_id),
        status=order.status,
        item_summary=order.item_name,
    )


class SqlUserDirectory:
    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    def _get(self, user_id: str) -> Optional[UserRecord]:
        db = self._session_factory()
        try:
            user = db.query(User).filter(User.id == user_id).first()
            return _to_user_record(user) if user else None
        finally:
            db.close()

    async def get_by_id(self, user_id: str) -> Optional[UserRecord]:
        return await run_in_threadpool(self._get, user_id)


class SqlOrderDirectory:
    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    def _get(self, order_id: str) -> Optional[OrderRecord]:
        db = self._session_factory()
        try:
            order = db.query(Order).filter(Order.id == order_id).first()
            return _to_order_record(order) if order else None
        finally:
            db.close()

    def _active_for_customer(self, customer_id: str) -> list[OrderRecord]:
        db = self._session_factory()
        try:
            rows = (
                db.query(Order)
                .filter(
                    Order.customer_id == customer_id,
                    Order.status.in_(ACTIVE_ORDER_STATUSES),
                )
                .order_by(Order.created_at.asc())
                .all()
            )
            return [_to_order_record(o) for o in rows]
        finally:
            db.close()

    async def get_by_id(self, order_id: str) -> Optional[OrderRecord]:
        return await run_in_threadpool(self._get, order_id)

    async def get_active_for_customer(self, customer_id: str) -> list[OrderRecord]:
        return await run_in_threadpool(self._active_for_customer, customer_id)
