from fastapi import APIRouter, Request, HTTPException, Depends
from pydantic import BaseModel, Field
from typing import Optional
from app.core.config import settings
from app.realtime import Realtime
import logging
import secrets

logger = logging.getLogger(__name__)

router = APIRouter()


def _admin_auth(request: Request):
    """Require the X-Admin-Token header to match ADMIN_TOKEN."""
    header = request.headers.get("x-admin-token")
    if settings.ADMIN_TOKEN and header and secrets.compare_digest(header, settings.ADMIN_TOKEN):
        return True

    logger.warning("Admin authentication failed")
    raise HTTPException(status_code=401, detail="Unauthorized")


def get_realtime(request: Request) -> Realtime:
    return request.app.state.realtime


class DisconnectRequest(BaseModel):
    reason: str = "Administrative action"


class AnnouncementRequest(BaseModel):
    message: str = Field(min_length=1, max_length=1000)
    type: str = "announcement"
    title: Optional[str] = None
    priority: str = "normal"


@router.get("/stats")
async def connection_stats(
    realtime: Realtime = Depends(get_realtime),
    _auth: bool = Depends(_admin_auth),
) -> dict:
    """Connected users and their socket ids."""
    return realtime.manager.get_connection_stats()


@router.get("/users/{user_id}")
async def user_presence(
    user_id: str,
    realtime: Realtime = Depends(get_realtime),
    _auth: bool = Depends(_admin_auth),
) -> dict:
    session = realtime.manager.session_for_user(user_id)
    return {
        "userId": user_id,
        "online": session is not None,
        "session": session.describe() if session else None,
    }


@router.post("/users/{user_id}/disconnect")
async def disconnect_user(
    user_id: str,
    req: DisconnectRequest,
    realtime: Realtime = Depends(get_realtime),
    _auth: bool = Depends(_admin_auth),
) -> dict:
    if not realtime.manager.has_session(user_id):
        raise HTTPException(status_code=404, detail="User is not connected")
    disconnected = await realtime.manager.force_disconnect(user_id, req.reason)
    return {"userId": user_id, "disconnected": disconnected}


@router.post("/announcements")
async def announce(
    req: AnnouncementRequest,
    realtime: Realtime = Depends(get_realtime),
    _auth: bool = Depends(_admin_auth),
) -> dict:
    result = await realtime.notifier.broadcast_announcement(req.model_dump())
    if not result.ok:
        raise HTTPException(status_code=503, detail="Realtime service unavailable")
    return {"sent": True, "delivered": result.delivered}
