from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import socketio
from app.core.config import settings
from app.api import router as api_router
from app.core.db import create_tables
from app.core import models as _models
from app.realtime import build_realtime
from app.realtime.server import create_socket_server
from app.services.directory import SqlOrderDirectory, SqlUserDirectory
import logging

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="FestEats Realtime",
    version="1.0.0",
    description="Order, balance and notification push for the FestEats ordering platform",
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

realtime = build_realtime(SqlUserDirectory(), SqlOrderDirectory())
sio = create_socket_server(realtime.manager)
app.state.realtime = realtime


@app.on_event("startup")
async def startup_event():
    """Initialize application on startup"""
    logger.info("Starting FestEats Realtime")
    # In production, use migrations instead of create_tables
    if settings.ENVIRONMENT == "development":
        # ensure models imported so metadata includes all tables
        _ = _models
        create_tables()
    realtime.manager.initialize(sio)


@app.on_event("shutdown")
async def shutdown_event():
    await realtime.manager.shutdown()


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers and monitoring"""
    return {"status": "healthy", "version": "1.0.0", "service": "festeats-realtime"}


# Include API routes
app.include_router(api_router, prefix="/api/v1")
# Also expose the same API surface at /api for unversioned callers
app.include_router(api_router, prefix="/api")

# Socket.IO in front of the HTTP app; serve with `uvicorn app.main:asgi_app`
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)
