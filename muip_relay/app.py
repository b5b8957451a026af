"""Main application entry-point for muip-relay."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .adapters import DispatchClient
from .config import RelayConfig, load_config
from .console import ConsoleRunner, LogBroadcaster, StdinConsole
from .core.rate_gate import RateGate
from .gateway import GatewayServer
from .logging import configure_logging
from .pipeline import CommandPipeline

LOGGER = logging.getLogger(__name__)


def build_rate_gate(config: RelayConfig) -> RateGate:
    limits = config.rate_limit
    return RateGate(
        window_ms=limits.window_ms,
        max_requests=limits.max_requests,
        block_ms=limits.block_ms,
        max_entries=limits.max_entries,
        idle_ms=limits.idle_ms,
        cleanup_interval=limits.cleanup_interval,
    )


def build_pipeline(config: RelayConfig, client: DispatchClient) -> CommandPipeline:
    return CommandPipeline(
        client,
        admin_key=config.dispatch.admin_key,
        default_key_type=config.dispatch.key_type,
    )


class RelayApp:
    """Coordinates startup and shutdown of the relay services.

    The dispatch client, pipeline and rate gate are created up front; the
    HTTP gateway and optional stdin console are started by :meth:`run` and
    torn down in reverse order when the loop is cancelled.
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        *,
        broadcaster: Optional[LogBroadcaster] = None,
        dispatch_client: Optional[DispatchClient] = None,
    ) -> None:
        self._config = config or load_config()
        self._broadcaster = broadcaster or LogBroadcaster()
        self._client = dispatch_client or DispatchClient(self._config.dispatch)
        self._pipeline = build_pipeline(self._config, self._client)
        self._rate_gate = build_rate_gate(self._config)
        self._console_runner = ConsoleRunner(
            self._pipeline, key_type=self._config.dispatch.key_type
        )
        self._gateway: Optional[GatewayServer] = None
        self._stdin_console: Optional[StdinConsole] = None
        self._shutdown_event: Optional[asyncio.Event] = None

    @property
    def broadcaster(self) -> LogBroadcaster:
        return self._broadcaster

    @property
    def pipeline(self) -> CommandPipeline:
        return self._pipeline

    @property
    def rate_gate(self) -> RateGate:
        return self._rate_gate

    async def run(self) -> None:
        """Start services and idle until cancelled or :meth:`request_shutdown`."""

        self._shutdown_event = asyncio.Event()
        LOGGER.info("muip-relay starting with config: %s", self._config.path)
        if not self._config.dispatch.admin_key:
            LOGGER.warning("No dispatch admin_key configured; authorization will fail")

        await self._start_services()
        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            LOGGER.info("muip-relay received shutdown signal")
            raise
        finally:
            await self._stop_services()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    @classmethod
    def start(cls, config: Optional[RelayConfig] = None) -> None:
        resolved = config or load_config()
        broadcaster = LogBroadcaster()
        configure_logging(
            resolved.logging.level,
            log_path=resolved.logging.path,
            log_network=resolved.logging.log_network,
            broadcaster=broadcaster if resolved.console.websocket_enabled else None,
        )
        instance = cls(config=resolved, broadcaster=broadcaster)
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("muip-relay received shutdown signal")

    async def _start_services(self) -> None:
        server = self._config.server
        console = self._config.console

        self._gateway = GatewayServer(
            self._pipeline,
            self._rate_gate,
            host=server.host,
            port=server.port,
            cors_origin=server.cors_origin,
            broadcaster=self._broadcaster if console.websocket_enabled else None,
            console_runner=self._console_runner,
        )
        await self._gateway.start()

        if console.stdin_enabled:
            self._stdin_console = StdinConsole(self._console_runner)
            await self._stdin_console.start()

    async def _stop_services(self) -> None:
        if self._stdin_console is not None:
            await self._stdin_console.stop()
            self._stdin_console = None

        if self._gateway is not None:
            await self._gateway.stop()
            self._gateway = None

        await self._client.aclose()
        LOGGER.info("muip-relay stopped")
