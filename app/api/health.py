from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.core.db import get_db

router = APIRouter()

@router.get("")
async def health_check(request: Request, db: Session = Depends(get_db)):
    """Comprehensive health check"""
    health_status = {
        "status": "healthy",
        "version": "1.0.0",
        "services": {}
    }

    # Check database
    try:
        db.execute(text("SELECT 1"))
        health_status["services"]["database"] = "healthy"
    except Exception as e:
        health_status["services"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    # Check realtime subsystem
    realtime = getattr(request.app.state, "realtime", None)
    if realtime is not None and realtime.manager.initialized:
        health_status["services"]["realtime"] = "healthy"
        health_status["connectedUsers"] = realtime.manager.get_connection_stats()["connectedUsers"]
    else:
        health_status["services"]["realtime"] = "not initialized"
        health_status["status"] = "degraded"

    return health_status
