import os

os.environ.setdefault("DATABASE_URL", "sqlite://?check_same_thread=false")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("ENVIRONMENT", "test")

import asyncio
from collections import defaultdict

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import create_access_token
from app.core.db import Base
from app.realtime import RateLimiter, build_realtime
from app.services.directory import OrderRecord, UserRecord


class FakeSocketServer:
    """In-memory stand-in for socketio.AsyncServer.

    ``emissions`` records every emit call as (target, event, data);
    ``received`` records what each connected sid actually got.
    """

    def __init__(self, manager=None):
        self.manager = manager
        self.connected: set[str] = set()
        self.rooms: dict[str, set[str]] = defaultdict(set)
        self.emissions: list[tuple] = []
        self.received: dict[str, list[tuple[str, dict]]] = defaultdict(list)
        self.disconnected: list[str] = []
        self.background_tasks: list = []
        self.fail_emit = False
        self.fail_enter_room = False

    async def emit(self, event, data=None, to=None, room=None):
        if self.fail_emit:
            raise RuntimeError("transport down")
        target = to if to is not None else room
        self.emissions.append((target, event, data))
        if to is not None:
            recipients = {to} & self.connected
        elif room is not None:
            recipients = set(self.rooms.get(room, ()))
        else:
            recipients = set(self.connected)
        for sid in recipients:
            self.received[sid].append((event, data))

    async def enter_room(self, sid, room):
        if self.fail_enter_room:
            raise RuntimeError("room join failed")
        self.rooms[room].add(sid)

    async def leave_room(self, sid, room):
        self.rooms[room].discard(sid)

    async def disconnect(self, sid):
        if sid not in self.connected:
            return
        self.connected.discard(sid)
        for members in self.rooms.values():
            members.discard(sid)
        self.disconnected.append(sid)
        if self.manager is not None:
            await self.manager.on_disconnect(sid)

    def start_background_task(self, target, *args, **kwargs):
        self.background_tasks.append(target)
        return None

    def events(self, sid, name=None):
        return [(e, d) for e, d in self.received[sid] if name is None or e == name]

    def payloads(self, sid, name):
        return [d for e, d in self.received[sid] if e == name]


class FakeUserDirectory:
    def __init__(self, users):
        self.users = {u.id: u for u in users}
        self.fail = False

    async def get_by_id(self, user_id):
        await asyncio.sleep(0)
        if self.fail:
            raise ConnectionError("user service unreachable")
        return self.users.get(user_id)


class FakeOrderDirectory:
    def __init__(self, orders):
        self.orders = {o.id: o for o in orders}
        self.fail = False

    async def get_by_id(self, order_id):
        await asyncio.sleep(0)
        if self.fail:
            raise ConnectionError("order service unreachable")
        return self.orders.get(order_id)

    async def get_active_for_customer(self, customer_id):
        await asyncio.sleep(0)
        if self.fail:
            raise ConnectionError("order service unreachable")
        return [
            o for o in self.orders.values()
            if o.customer_id == customer_id and o.status not in ("completed", "cancelled")
        ]


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_token(user_id: str) -> str:
    return create_access_token({"sub": user_id})


@pytest.fixture
def users():
    return [
        UserRecord(id="cust-a", type="customer", active=True, name="Alice"),
        UserRecord(id="cust-c", type="customer", active=True, name="Carol"),
        UserRecord(id="cust-s", type="customer", active=False, name="Sam"),
        UserRecord(id="vend-b", type="vendor", active=True, name="Bao Stand"),
        UserRecord(id="vend-d", type="vendor", active=True, name="Dosa Cart"),
        UserRecord(id="admin-1", type="admin", active=True, name="Ops"),
    ]


@pytest.fixture
def orders():
    return [
        OrderRecord(id="O1", customer_id="cust-a", vendor_id="vend-b", status="preparing", item_summary="Pork Bun"),
        OrderRecord(id="O2", customer_id="cust-c", vendor_id="vend-b", status="pending", item_summary="Veg Bun"),
        OrderRecord(id="O3", customer_id="cust-a", vendor_id="vend-d", status="completed", item_summary="Masala Dosa"),
        OrderRecord(id="O4", customer_id="cust-a", vendor_id="vend-d", status="confirmed", item_summary="Chai"),
    ]


@pytest.fixture
def user_directory(users):
    return FakeUserDirectory(users)


@pytest.fixture
def order_directory(orders):
    return FakeOrderDirectory(orders)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def realtime(user_directory, order_directory, clock):
    return build_realtime(
        user_directory,
        order_directory,
        rate_limiter=RateLimiter(limit=5, window=60, clock=clock),
        ready_statuses=frozenset({"ready", "completed"}),
    )


@pytest.fixture
def sio(realtime):
    server = FakeSocketServer(realtime.manager)
    realtime.manager.initialize(server)
    return server


@pytest.fixture
def connect(realtime, sio):
    """Open a fake transport connection and run the handshake for it."""

    async def _connect(sid, user_id=None, token=None, claimed_user_id=None):
        sio.connected.add(sid)
        auth = {}
        if token is not None:
            auth["token"] = token
        elif user_id is not None:
            auth["token"] = make_token(user_id)
        if claimed_user_id is not None:
            auth["userId"] = claimed_user_id
        try:
            return await realtime.manager.on_connect(sid, auth)
        except Exception:
            sio.connected.discard(sid)
            raise

    return _connect


@pytest.fixture
def db_session_factory():
    """Fresh in-memory SQLite database shared across threads"""
    from app.core import models  # noqa: F401

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client():
    """Test client running the app's startup and shutdown hooks"""
    from app.main import app

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
