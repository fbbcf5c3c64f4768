"""
TSDB Server - Main entry point.

This module starts the TSDB server with all components:
- Collection router (stores loaded from the snapshot tree)
- WebSocket listener
- Snapshotter loop (TTL sweep + incremental flush)

Usage:
    python -m dbaas.tsdb_server.main -s SECRET -c public:60 -d /var/lib/tsdb -i 1

Configuration comes from flags with environment fallbacks.
See config.py for all available settings.

Invariants:
    - Stores are loaded before the listener accepts connections
    - Graceful shutdown stops the loop, closes the stores, flushes once more,
      then drains connections

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Sequence

import json_log_formatter
from aiohttp import web

from .api import create_ws_app
from .config import ServerConfig
from .routing import CollectionRouter
from .snapshot import Snapshotter

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """TSDB Server orchestrator.

    Manages the lifecycle of all server components:
    - Collection router and its stores
    - WebSocket listener
    - Background snapshotter

    Attributes:
        config: Server configuration
        router: Collection router
        snapshotter: Maintenance loop

    Example:
        >>> server = Server(config)
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig) -> None:
        self.config = config
        self._running = False
        self._shutdown_event = asyncio.Event()

        storage = config.storage
        self.router = CollectionRouter(
            config.collections,
            storage_root=storage.storage_dir if storage.persistence_enabled else None,
            requeue_failed_flush=storage.requeue_failed_flush,
        )
        self.snapshotter = Snapshotter(
            self.router,
            interval_seconds=storage.maintenance_interval,
            flush_enabled=storage.persistence_enabled,
        )

        self._runner: web.AppRunner | None = None
        self._tasks: list[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, wait: bool = True) -> None:
        """Start the server and all components.

        Args:
            wait: Block until shutdown is requested
        """
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting TSDB server")
        self.config.log_config()

        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.router.load_existing)

            app = create_ws_app(self.router, self.config.secret_key)
            self._runner = web.AppRunner(
                app,
                shutdown_timeout=self.config.listener.shutdown_timeout,
                access_log=None,
            )
            await self._runner.setup()

            site = web.TCPSite(self._runner, self.config.listener.host, self.config.listener.port)
            await site.start()
            logger.info(f"Listening on {self.config.listener.host}:{self.config.listener.port}")

            self._tasks.append(asyncio.create_task(self.snapshotter.start()))

            self._running = True
            logger.info("TSDB server started successfully")

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self._cleanup()
            raise

        if wait:
            await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping TSDB server")
        self._running = False

        await self.snapshotter.stop()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks.clear()

        # Inserts are rejected from here on, so the final flush sees every
        # acknowledged record.
        await asyncio.get_running_loop().run_in_executor(None, self.router.close)
        if self.config.storage.persistence_enabled:
            await self.snapshotter.run_cycle(flush=True, final=True)

        await self._cleanup()
        logger.info("TSDB server stopped")

    async def _cleanup(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    config = ServerConfig.from_args(argv)

    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
