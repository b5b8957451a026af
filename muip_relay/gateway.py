"""HTTP surface exposing the command pipeline to external callers."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from aiohttp import WSMsgType, web

from .console import ConsoleRunner, LogBroadcaster
from .core.rate_gate import RateGate
from .errors import RateLimited, RelayError, ValidationError
from .pipeline import CommandPipeline

LOGGER = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

_CORS_METHODS = "GET, POST, OPTIONS"
_CORS_HEADERS = "Content-Type, Authorization"


class GatewayServer:
    """aiohttp application wiring requests to the pipeline and rate gate."""

    def __init__(
        self,
        pipeline: CommandPipeline,
        rate_gate: RateGate,
        *,
        host: str,
        port: int,
        cors_origin: str = "*",
        broadcaster: Optional[LogBroadcaster] = None,
        console_runner: Optional[ConsoleRunner] = None,
    ) -> None:
        self._pipeline = pipeline
        self._rate_gate = rate_gate
        self._host = host
        self._port = port
        self._cors_origin = cors_origin
        self._broadcaster = broadcaster
        self._console_runner = console_runner
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    def build_app(self) -> web.Application:
        app = web.Application(
            middlewares=[
                self._log_middleware,
                self._cors_middleware,
                self._error_middleware,
            ]
        )
        app.router.add_get("/get", self._handle_ping)
        app.router.add_post("/api/submit", self._handle_submit)
        app.router.add_post("/api/player", self._handle_player)
        app.router.add_get("/api/status", self._handle_status)
        if self._broadcaster is not None:
            app.router.add_get("/ws", self._handle_console_socket)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        LOGGER.info("Server is running on http://%s:%s", self._host, self._port)

    async def stop(self) -> None:
        with contextlib.suppress(Exception):
            if self._site is not None:
                await self._site.stop()
        if self._runner is not None:
            await self._runner.cleanup()
        self._site = None
        self._runner = None

    # ------------------------------------------------------------------
    # Middlewares
    # ------------------------------------------------------------------
    @web.middleware
    async def _log_middleware(
        self, request: web.Request, handler: Handler
    ) -> web.StreamResponse:
        started = time.monotonic()
        status = 500
        try:
            response = await handler(request)
            status = response.status
            return response
        except web.HTTPException as exc:
            status = exc.status
            raise
        finally:
            LOGGER.info(
                "Frontend: %s %s - %s (%dms)",
                request.method,
                request.path_qs,
                status,
                (time.monotonic() - started) * 1000,
            )

    @web.middleware
    async def _cors_middleware(
        self, request: web.Request, handler: Handler
    ) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response: web.StreamResponse = web.Response(status=204)
            response.headers["Access-Control-Allow-Methods"] = _CORS_METHODS
            response.headers["Access-Control-Allow-Headers"] = _CORS_HEADERS
        else:
            response = await handler(request)
        if not response.prepared:
            response.headers["Access-Control-Allow-Origin"] = self._cors_origin
        return response

    @web.middleware
    async def _error_middleware(
        self, request: web.Request, handler: Handler
    ) -> web.StreamResponse:
        try:
            return await handler(request)
        except RateLimited as exc:
            LOGGER.warning("Rejected %s %s: %s", request.method, request.path, exc)
            return web.json_response(
                {"error": str(exc), "retryAfterMs": exc.retry_after_ms},
                status=429,
                headers={"Retry-After": str(exc.retry_after_seconds)},
            )
        except ValidationError as exc:
            LOGGER.error("Invalid request to %s: %s", request.path, exc)
            return web.json_response({"error": str(exc)}, status=400)
        except RelayError as exc:
            LOGGER.error("API %s error: %s", request.path, exc)
            return web.json_response({"error": str(exc)}, status=500)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    async def _handle_ping(self, request: web.Request) -> web.Response:
        return web.json_response({"success": True})

    async def _handle_submit(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        uid = _optional_text(body.get("uid"))
        command = _optional_text(body.get("command"))
        key_type = _optional_text(body.get("keyType"))

        if not uid:
            raise ValidationError("UID is required.")
        self._rate_gate.enforce(uid)

        if not command:
            raise ValidationError("UID and command are required.")

        result = await self._pipeline.run(key_type, uid, command)
        status = 200 if result.ok else 500
        return web.json_response(result.as_dict(), status=status)

    async def _handle_player(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        uid = _optional_text(body.get("uid"))
        if not uid:
            raise ValidationError("UID is required.")

        envelope = await self._pipeline.query_player_info(uid)
        return web.json_response(envelope.as_dict())

    async def _handle_status(self, request: web.Request) -> web.Response:
        envelope = await self._pipeline.query_status()
        return web.json_response(envelope.as_dict())

    async def _handle_console_socket(self, request: web.Request) -> web.WebSocketResponse:
        assert self._broadcaster is not None
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        loop = asyncio.get_running_loop()
        outbox: asyncio.Queue[str] = asyncio.Queue()

        def _observer(line: str) -> None:
            if ws.closed:
                raise ConnectionResetError("console socket closed")
            loop.call_soon_threadsafe(outbox.put_nowait, line)

        sender = asyncio.create_task(_pump(ws, outbox))
        self._broadcaster.subscribe(_observer)
        LOGGER.info("New console client connected")

        try:
            async for message in ws:
                if message.type == WSMsgType.TEXT:
                    LOGGER.info("Received console message: %s", message.data)
                    if self._console_runner is not None:
                        await self._console_runner.handle_line(message.data)
                elif message.type == WSMsgType.ERROR:
                    LOGGER.warning("Console socket error: %s", ws.exception())
        finally:
            self._broadcaster.unsubscribe(_observer)
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sender
            LOGGER.info("Console client disconnected")

        return ws


async def _pump(ws: web.WebSocketResponse, outbox: "asyncio.Queue[str]") -> None:
    while True:
        line = await outbox.get()
        if ws.closed:
            return
        try:
            await ws.send_str(line)
        except ConnectionResetError:
            return


async def _read_json(request: web.Request) -> Dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValidationError("Request body must be valid JSON") from exc
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
