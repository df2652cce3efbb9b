import asyncio

import pytest

from app.core.exceptions import AuthError, AuthFailure, UpstreamError
from app.realtime import Role, SessionState
from app.core.auth import create_access_token


@pytest.mark.asyncio
async def test_customer_connects_and_joins_user_room(realtime, sio, connect):
    session = await connect("s1", "cust-a")

    assert session.role is Role.CUSTOMER
    assert realtime.manager.has_session("cust-a")
    assert sio.rooms["user-cust-a"] == {"s1"}
    assert session.joined_rooms == {"user-cust-a"}
    assert sio.payloads("s1", "connected") == [
        {
            "userId": "cust-a",
            "userType": "customer",
            "message": "Successfully connected to real-time updates",
        }
    ]
    assert set(session.handlers) >= {"join-user-room", "track-my-orders"}
    assert "update-order-status" not in session.handlers


@pytest.mark.asyncio
async def test_vendor_also_joins_dashboard_room(sio, connect):
    session = await connect("s1", "vend-b")
    assert session.joined_rooms == {"user-vend-b", "vendor-dashboard-vend-b"}
    assert "s1" in sio.rooms["vendor-dashboard-vend-b"]
    assert "update-order-status" in session.handlers


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs, reason",
    [
        ({}, AuthFailure.NO_TOKEN),
        ({"token": "garbage"}, AuthFailure.INVALID_TOKEN),
        ({"user_id": "ghost"}, AuthFailure.USER_NOT_FOUND),
        ({"user_id": "cust-a", "claimed_user_id": "cust-c"}, AuthFailure.USER_MISMATCH),
        ({"user_id": "cust-s"}, AuthFailure.ACCOUNT_INACTIVE),
    ],
)
async def test_handshake_rejections_leave_nothing_registered(realtime, sio, connect, kwargs, reason):
    with pytest.raises(AuthError) as exc:
        await connect("s1", **kwargs)

    assert exc.value.reason is reason
    assert realtime.manager.get_session("s1") is None
    assert realtime.manager.get_connection_stats()["connectedUsers"] == 0
    assert not sio.rooms.get("user-cust-a")


@pytest.mark.asyncio
async def test_claimed_user_id_matching_token_is_accepted(realtime, connect):
    await connect("s1", "cust-a", claimed_user_id="cust-a")
    assert realtime.manager.has_session("cust-a")


@pytest.mark.asyncio
async def test_unknown_account_type_is_rejected(realtime, user_directory, connect):
    from app.services.directory import UserRecord

    user_directory.users["odd"] = UserRecord(id="odd", type="courier", active=True)
    with pytest.raises(AuthError) as exc:
        await connect("s1", "odd")
    assert exc.value.details == {"accountType": "courier"}
    assert not realtime.manager.has_session("odd")


@pytest.mark.asyncio
async def test_user_lookup_failure_is_upstream_error(realtime, user_directory, connect):
    user_directory.fail = True
    with pytest.raises(UpstreamError):
        await connect("s1", "cust-a")
    assert realtime.manager.get_session("s1") is None


@pytest.mark.asyncio
async def test_failed_room_join_unregisters_session(realtime, sio, connect):
    sio.fail_enter_room = True
    with pytest.raises(RuntimeError):
        await connect("s1", "cust-a")
    assert not realtime.manager.has_session("cust-a")
    assert realtime.manager.get_session("s1") is None


@pytest.mark.asyncio
async def test_second_connection_replaces_first(realtime, sio, connect):
    first = await connect("s1", "cust-a")
    second = await connect("s2", "cust-a")

    replaced = sio.payloads("s1", "session-replaced")
    assert len(replaced) == 1
    assert replaced[0]["reason"] == "Your session has been replaced by a new login"
    assert "timestamp" in replaced[0]
    assert sio.disconnected == ["s1"]

    assert first.state is SessionState.CLOSED
    assert second.is_active
    assert realtime.manager.session_for_user("cust-a") is second
    assert realtime.manager.get_connection_stats() == {
        "connectedUsers": 1,
        "userConnections": [["cust-a", "s2"]],
    }
    assert sio.rooms["user-cust-a"] == {"s2"}


@pytest.mark.asyncio
async def test_concurrent_connects_for_one_user_leave_one_session(realtime, sio, connect):
    sessions = await asyncio.gather(*(connect(f"s{i}", "cust-a") for i in range(5)))

    stats = realtime.manager.get_connection_stats()
    assert stats["connectedUsers"] == 1
    live_sid = stats["userConnections"][0][1]

    live = [s for s in sessions if s.is_active]
    assert [s.sid for s in live] == [live_sid]
    assert sorted(sio.disconnected) == sorted(s.sid for s in sessions if s.sid != live_sid)
    for session in sessions:
        if session.sid != live_sid:
            assert sio.payloads(session.sid, "session-replaced")


@pytest.mark.asyncio
async def test_disconnect_is_idempotent(realtime, sio, connect):
    session = await connect("s1", "cust-a")

    await sio.disconnect("s1")
    assert not realtime.manager.has_session("cust-a")
    assert session.state is SessionState.CLOSED

    await realtime.manager.on_disconnect("s1")
    await realtime.manager.on_disconnect("never-connected")
    assert realtime.manager.get_connection_stats()["connectedUsers"] == 0


@pytest.mark.asyncio
async def test_late_disconnect_of_replaced_socket_keeps_new_session(realtime, connect):
    await connect("s1", "cust-a")
    await connect("s2", "cust-a")

    await realtime.manager.on_disconnect("s1")
    assert realtime.manager.session_for_user("cust-a").sid == "s2"


@pytest.mark.asyncio
async def test_evict_uses_caller_reason(realtime, sio, connect):
    await connect("s1", "cust-a")

    assert await realtime.manager.evict("cust-a", "Password changed") is True
    assert sio.payloads("s1", "session-replaced")[0]["reason"] == "Password changed"
    assert not realtime.manager.has_session("cust-a")
    assert await realtime.manager.evict("cust-a", "again") is False


@pytest.mark.asyncio
async def test_force_disconnect_sends_force_disconnect(realtime, sio, connect):
    await connect("s1", "vend-b")

    assert await realtime.manager.force_disconnect("vend-b", "Stall closed") is True
    assert sio.payloads("s1", "force-disconnect") == [{"reason": "Stall closed"}]
    assert "s1" not in sio.connected
    assert not realtime.manager.has_session("vend-b")


@pytest.mark.asyncio
async def test_eviction_survives_transport_errors(realtime, sio, connect):
    await connect("s1", "cust-a")
    sio.fail_emit = True

    assert await realtime.manager.evict("cust-a") is True
    assert not realtime.manager.has_session("cust-a")


@pytest.mark.asyncio
async def test_shutdown_closes_every_session(realtime, sio, connect):
    await connect("s1", "cust-a")
    await connect("s2", "vend-b")

    await realtime.manager.shutdown()

    assert sorted(sio.disconnected) == ["s1", "s2"]
    assert realtime.manager.get_connection_stats()["connectedUsers"] == 0
    assert not realtime.manager.initialized
    assert await realtime.manager.evict("cust-a") is False


def test_initialize_schedules_bucket_clearing(realtime, sio):
    assert sio.background_tasks == [realtime.manager.rate_limiter.run_clear_loop]
    realtime.manager.initialize(sio)
    assert len(sio.background_tasks) == 1


@pytest.mark.asyncio
async def test_token_for_one_user_cannot_claim_another(realtime, connect):
    with pytest.raises(AuthError):
        await connect("s1", token=create_access_token({"sub": "cust-a"}), claimed_user_id="admin-1")
    assert not realtime.manager.has_session("admin-1")
