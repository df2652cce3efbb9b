"""Authenticated Socket.IO sessions with one live session per user.

The manager owns the user -> sid registry and the sid -> Session map. Nothing
else mutates them; other components go through the methods below to join
rooms or push events.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from app.core.auth import verify_access_token
from app.core.exceptions import AuthError, AuthFailure, UpstreamError
from app.realtime.rate_limiter import RateLimiter
from app.realtime.sessions import (
    Role,
    Session,
    user_room,
    vendor_dashboard_room,
)
from app.services.directory import UserDirectory

logger = logging.getLogger(__name__)

SESSION_REPLACED_REASON = "Your session has been replaced by a new login"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConnectionManager:
    def __init__(self, user_directory: UserDirectory, rate_limiter: RateLimiter | None = None):
        self.user_directory = user_directory
        self.rate_limiter = rate_limiter or RateLimiter()
        self.router = None
        self.sio = None
        self._sessions: dict[str, Session] = {}
        self._registry: dict[str, str] = {}
        self._user_locks: dict[str, asyncio.Lock] = {}
        self._lock_holders: dict[str, int] = {}
        self._cleanup_task = None

    # ─── Lifecycle ───────────────────────────────────────────────────────────

    @property
    def initialized(self) -> bool:
        return self.sio is not None

    def use_router(self, router) -> None:
        self.router = router

    def initialize(self, sio) -> None:
        if self.initialized:
            logger.warning("ConnectionManager already initialized")
            return
        self.sio = sio
        self._cleanup_task = sio.start_background_task(self.rate_limiter.run_clear_loop)
        logger.info("ConnectionManager initialized successfully")

    async def shutdown(self) -> None:
        if not self.initialized:
            return
        self.rate_limiter.stop()
        if self._cleanup_task is not None and hasattr(self._cleanup_task, "cancel"):
            self._cleanup_task.cancel()
        self._cleanup_task = None

        for session in list(self._sessions.values()):
            if session.begin_eviction():
                try:
                    await self.sio.disconnect(session.sid)
                except Exception as e:
                    logger.warning(f"Error closing socket {session.sid} on shutdown: {e}")
            self._discard(session)

        self.sio = None
        logger.info("ConnectionManager shut down")

    # ─── Connect / disconnect ────────────────────────────────────────────────

    @asynccontextmanager
    async def _user_lock(self, user_id: str):
        """Serialize connect and eviction for one user id."""
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = self._user_locks[user_id] = asyncio.Lock()
        self._lock_holders[user_id] = self._lock_holders.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[user_id] -= 1
            if not self._lock_holders[user_id]:
                del self._lock_holders[user_id]
                del self._user_locks[user_id]

    async def on_connect(self, sid: str, auth: Optional[dict[str, Any]]) -> Session:
        """Authenticate a handshake and admit it as the user's only session.

        Raises ``AuthError`` (or ``UpstreamError`` when the user lookup itself
        fails); in both cases nothing is left registered for ``sid``.
        """
        auth = auth if isinstance(auth, dict) else {}
        token = auth.get("token")
        if not token:
            raise AuthError(AuthFailure.NO_TOKEN)

        claims = verify_access_token(str(token))
        if claims is None:
            raise AuthError(AuthFailure.INVALID_TOKEN)
        subject = str(claims["sub"])

        async with self._user_lock(subject):
            try:
                user = await self.user_directory.get_by_id(subject)
            except Exception as e:
                logger.error(f"User lookup failed during socket authentication: {e}")
                raise UpstreamError("Authentication failed") from e
            if user is None:
                raise AuthError(AuthFailure.USER_NOT_FOUND)

            claimed = auth.get("userId")
            if claimed and str(claimed) != user.id:
                raise AuthError(AuthFailure.USER_MISMATCH)
            if not user.active:
                raise AuthError(AuthFailure.ACCOUNT_INACTIVE)
            role = Role.from_account_type(user.type)

            existing_sid = self._registry.get(user.id)
            if existing_sid is not None and existing_sid != sid:
                await self._close_session(
                    existing_sid,
                    "session-replaced",
                    {"reason": SESSION_REPLACED_REASON, "timestamp": _now()},
                )
                logger.info(f"Replaced existing connection for user {user.id}: {existing_sid}")

            session = Session(sid=sid, user_id=user.id, role=role)
            if self.router is not None:
                session.handlers = self.router.handlers_for(role)
            self._sessions[sid] = session
            self._registry[user.id] = sid

            try:
                await self.join_room(session, user_room(user.id))
                if role is Role.VENDOR:
                    await self.join_room(session, vendor_dashboard_room(user.id))
                await self.send(
                    sid,
                    "connected",
                    {
                        "userId": user.id,
                        "userType": role.value,
                        "message": "Successfully connected to real-time updates",
                    },
                )
            except Exception:
                self._discard(session)
                raise

        logger.info(f"User {user.id} ({role.value}) connected with socket {sid}")
        return session

    async def on_disconnect(self, sid: str) -> None:
        session = self._sessions.get(sid)
        if session is None:
            return
        self._discard(session)
        logger.info(f"User {session.user_id} disconnected (socket {sid})")

    def _discard(self, session: Session) -> None:
        self._sessions.pop(session.sid, None)
        if self._registry.get(session.user_id) == session.sid:
            del self._registry[session.user_id]
        session.close()

    async def _close_session(self, sid: str, event: str, payload: dict[str, Any]) -> bool:
        """Notify then close: Active -> Evicting -> Closed."""
        session = self._sessions.get(sid)
        if session is None or not session.begin_eviction():
            return False
        try:
            await self.sio.emit(event, payload, to=sid)
        except Exception as e:
            logger.warning(f"Could not deliver {event} to socket {sid}: {e}")
        try:
            await self.sio.disconnect(sid)
        except Exception as e:
            logger.warning(f"Error disconnecting socket {sid}: {e}")
        finally:
            self._discard(session)
        return True

    # ─── Queries and administrative actions ──────────────────────────────────

    def has_session(self, user_id: str) -> bool:
        return user_id in self._registry

    def get_session(self, sid: str) -> Optional[Session]:
        return self._sessions.get(sid)

    def session_for_user(self, user_id: str) -> Optional[Session]:
        sid = self._registry.get(user_id)
        return self._sessions.get(sid) if sid else None

    async def evict(self, user_id: str, reason: str = "New session started") -> bool:
        if not self.initialized:
            return False
        async with self._user_lock(user_id):
            sid = self._registry.get(user_id)
            if sid is None:
                return False
            closed = await self._close_session(
                sid, "session-replaced", {"reason": reason, "timestamp": _now()}
            )
        if closed:
            logger.info(f"Evicted user {user_id}. Reason: {reason}")
        return closed

    async def force_disconnect(self, user_id: str, reason: str = "Administrative action") -> bool:
        if not self.initialized:
            return False
        async with self._user_lock(user_id):
            sid = self._registry.get(user_id)
            if sid is None:
                return False
            closed = await self._close_session(sid, "force-disconnect", {"reason": reason})
        if closed:
            logger.info(f"User {user_id} forcibly disconnected: {reason}")
        return closed

    def get_connection_stats(self) -> dict[str, Any]:
        return {
            "connectedUsers": len(self._registry),
            "userConnections": [[user_id, sid] for user_id, sid in self._registry.items()],
        }

    def is_room_occupied(self, room: str | None) -> bool:
        if room is None:
            return bool(self._sessions)
        return any(room in s.joined_rooms for s in self._sessions.values())

    # ─── Transport helpers ───────────────────────────────────────────────────

    async def join_room(self, session: Session, room: str) -> None:
        await self.sio.enter_room(session.sid, room)
        session.joined_rooms.add(room)

    async def leave_room(self, session: Session, room: str) -> None:
        await self.sio.leave_room(session.sid, room)
        session.joined_rooms.discard(room)

    async def send(self, sid: str, event: str, data: dict[str, Any]) -> None:
        await self.sio.emit(event, data, to=sid)

    async def emit(self, event: str, data: dict[str, Any], room: str | None = None) -> None:
        """Emit to a room, or to every connected client when ``room`` is None."""
        await self.sio.emit(event, data, room=room)
