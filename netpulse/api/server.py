"""FastAPI application factory for the NetPulse API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from netpulse import __version__
from netpulse.api.routes import create_routes
from netpulse.api.websocket import WebSocketManager

if TYPE_CHECKING:
    from netpulse.main import Services

logger = logging.getLogger(__name__)


def create_app(services: Services) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="NetPulse API",
        description="Device discovery and health monitoring API",
        version=__version__,
    )

    # CORS: allow all origins for local use
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    ws_manager = WebSocketManager(services.event_bus)
    app.state.services = services
    app.state.ws_manager = ws_manager

    @app.on_event("startup")
    async def _startup() -> None:
        await ws_manager.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await ws_manager.stop()

    app.include_router(create_routes(services))

    @app.websocket("/ws/events")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        await ws_manager.connect(websocket)
        try:
            while True:
                data = await websocket.receive_text()
                if data == "ping":
                    await websocket.send_text("pong")
        except WebSocketDisconnect:
            ws_manager.disconnect(websocket)
        except Exception as exc:
            logger.debug("WebSocket client error: %s", exc)
            ws_manager.disconnect(websocket)

    return app
