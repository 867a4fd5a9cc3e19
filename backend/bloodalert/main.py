from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Dict, Optional

import socketio
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pymongo.errors import PyMongoError

from .container import Services, build_services, ensure_indexes
from .database import create_database, settings
from .errors import BloodAlertError
from .hub import LiveUpdateHub
from .routers import alerts, auth, donors, hospitals
from .services.alerts import run_expiry_sweeper
from .utils.logging import configure_logging, log_db_error


def create_app(services: Optional[Services] = None, *, run_background_tasks: bool = True) -> FastAPI:
    sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=settings.cors_origins)
    app = FastAPI(title="Blood Alert API", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    hub = LiveUpdateHub(sio)
    app.state.sio = sio
    app.state.hub = hub
    app.state.services = services or build_services(settings, create_database(settings), hub)

    app.include_router(auth.router)
    app.include_router(alerts.router)
    app.include_router(donors.router)
    app.include_router(hospitals.router)

    @app.exception_handler(BloodAlertError)
    async def handle_domain_error(request: Request, exc: BloodAlertError) -> JSONResponse:
        return JSONResponse(exc.to_payload(), status_code=exc.status_code)

    @app.exception_handler(PyMongoError)
    async def handle_database_error(request: Request, exc: PyMongoError) -> JSONResponse:
        log_db_error(f"{request.method} {request.url.path}", exc)
        return JSONResponse(
            {"detail": "Database unavailable. Try again shortly.", "error": "store_unavailable"},
            status_code=503,
        )

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.websocket("/ws/{topic}")
    async def topic_websocket(websocket: WebSocket, topic: str) -> None:
        await hub.connect(topic, websocket)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            hub.disconnect(topic, websocket)

    @sio.event
    async def connect(sid, environ):  # pragma: no cover - socket handshake
        logger.debug("Socket connected: {}", sid)

    @sio.event
    async def disconnect(sid):  # pragma: no cover - socket handshake
        logger.debug("Socket disconnected: {}", sid)

    @sio.on("join-room")
    async def join_room(sid, data: Dict[str, Any]):  # pragma: no cover - socket handshake
        room = f"{data.get('userType')}-{data.get('hospitalId') or 'global'}"
        await sio.enter_room(sid, room)
        logger.debug("Socket {} joined room {}", sid, room)

    @app.on_event("startup")
    async def start_background_work() -> None:
        if not run_background_tasks:
            return
        try:
            await ensure_indexes(app.state.services)
        except PyMongoError as exc:  # pragma: no cover - external service
            logger.warning("MongoDB unavailable; skipping index creation: {}", exc)
        app.state.expiry_task = asyncio.create_task(
            run_expiry_sweeper(app.state.services.alert_service, settings.expiry_sweep_interval_s)
        )

    @app.on_event("shutdown")
    async def stop_background_work() -> None:
        task = getattr(app.state, "expiry_task", None)
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    return app


configure_logging(settings.log_level)
app = create_app()
socket_app = socketio.ASGIApp(app.state.sio, other_asgi_app=app)
