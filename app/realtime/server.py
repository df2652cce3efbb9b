import logging

import socketio
from socketio.exceptions import ConnectionRefusedError

from app.core.config import settings
from app.core.exceptions import RealtimeError
from app.realtime.connection_manager import ConnectionManager
from app.realtime.router import INBOUND_EVENTS

logger = logging.getLogger(__name__)

# Keep the transport's own chatter out of the application log
_sio_logger = logging.getLogger("socketio")
_sio_logger.setLevel(logging.WARNING)
_eio_logger = logging.getLogger("engineio")
_eio_logger.setLevel(logging.WARNING)


def create_socket_server(manager: ConnectionManager) -> socketio.AsyncServer:
    """Build the Socket.IO server and route its events into ``manager``."""
    sio = socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins=settings.allowed_origins,
        logger=_sio_logger,
        engineio_logger=_eio_logger,
        ping_interval=settings.SOCKET_PING_INTERVAL,
        ping_timeout=settings.SOCKET_PING_TIMEOUT,
    )

    @sio.event
    async def connect(sid, environ, auth=None):
        try:
            await manager.on_connect(sid, auth)
        except RealtimeError as e:
            logger.info(f"Socket connection {sid} rejected: {e.code}")
            raise ConnectionRefusedError(e.message, e.to_payload())
        except Exception as e:
            logger.exception(f"Socket authentication error for {sid}: {e}")
            raise ConnectionRefusedError(
                "Authentication failed", {"code": "AUTH_ERROR", "message": "Authentication failed"}
            )

    @sio.event
    async def disconnect(sid, *args):
        await manager.on_disconnect(sid)

    for event in INBOUND_EVENTS:
        sio.on(event, handler=_dispatcher(manager, event))

    return sio


def _dispatcher(manager: ConnectionManager, event: str):
    async def handle(sid, data=None):
        await manager.router.dispatch(sid, event, data)

    return handle
