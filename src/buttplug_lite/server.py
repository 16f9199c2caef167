"""WebSocket command endpoint and HTTP status surface."""

from __future__ import annotations

import asyncio
import logging

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse

from . import status
from .controllers import LOG_PREFIX
from .runtime import HapticRuntime

LOGGER = logging.getLogger(__name__)

BIND_HOST = "127.0.0.1"


def create_app(runtime: HapticRuntime) -> FastAPI:
    """Build the FastAPI application serving *runtime*."""

    app = FastAPI(title="buttplug-lite", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.runtime = runtime

    @app.get("/", response_class=PlainTextResponse)
    async def info() -> str:
        return status.version_string()

    @app.get("/hapticstatus", response_class=PlainTextResponse)
    async def hapticstatus() -> str:
        return status.haptic_status(runtime.registry, device_layer_connected=runtime.device_layer.connected)

    @app.get("/batterystatus", response_class=PlainTextResponse)
    async def batterystatus() -> str:
        return status.battery_status(runtime.registry)

    @app.get("/deviceconfig", response_class=PlainTextResponse)
    async def deviceconfig() -> str:
        return status.device_config(runtime.configuration)

    @app.websocket("/haptic")
    async def haptic(websocket: WebSocket) -> None:
        await websocket.accept()
        LOGGER.info("%s: client connected", LOG_PREFIX)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                text = message.get("text")
                if text is None:
                    if message.get("bytes") is not None:
                        LOGGER.warning("%s: received unexpected binary message", LOG_PREFIX)
                    continue
                runtime.router.route_line(text)
        except WebSocketDisconnect:
            pass
        LOGGER.info("%s: client connection lost", LOG_PREFIX)

    return app


async def _serve(server: uvicorn.Server) -> None:
    try:
        await server.serve()
    except SystemExit:
        # uvicorn exits the process when it cannot bind
        LOGGER.error("Failed to start web server on port %d", server.config.port)


class WebServer:
    """Run uvicorn on the configured port, restarting when the port changes."""

    def __init__(self, runtime: HapticRuntime, *, host: str = BIND_HOST) -> None:
        self._runtime = runtime
        self._host = host
        self._app = create_app(runtime)
        self._server: uvicorn.Server | None = None
        self._restart = asyncio.Event()
        self._stopping = False
        runtime.add_port_listener(self._on_port_changed)

    @property
    def app(self) -> FastAPI:
        return self._app

    @property
    def port(self) -> int:
        return self._runtime.configuration.port

    @property
    def running(self) -> bool:
        return self._server is not None and self._server.started

    async def serve(self) -> None:
        while not self._stopping:
            self._restart.clear()
            config = uvicorn.Config(
                self._app,
                host=self._host,
                port=self.port,
                log_config=None,
                ws="websockets",
                lifespan="off",
            )
            server = uvicorn.Server(config)
            self._server = server
            LOGGER.info("Starting web server on %s:%d", self._host, self.port)
            serve_task = asyncio.create_task(_serve(server), name="uvicorn")
            restart_task = asyncio.create_task(self._restart.wait(), name="web-restart")
            done, _ = await asyncio.wait({serve_task, restart_task}, return_when=asyncio.FIRST_COMPLETED)
            if restart_task in done:
                server.should_exit = True
                await serve_task
            else:
                restart_task.cancel()
                self._server = None
                break
            self._server = None
        LOGGER.info("Web server stopped")

    def shutdown(self) -> None:
        self._stopping = True
        if self._server is not None:
            self._server.should_exit = True
        self._restart.set()

    def _on_port_changed(self, _port: int) -> None:
        self._restart.set()


__all__ = ["BIND_HOST", "WebServer", "create_app"]
