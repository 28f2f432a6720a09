"""Driver process runner.

Wires a :class:`~thingaccess.services.session.Session` to the gateway, loads
the driver configuration, builds one client per configured thing and keeps
each of them online with exponential back-off.

Architecture:
    run(thing_factory) -> ThingAccessDaemon
        ├── get_config / listen_changes (DriverConfigManager)
        ├── thing-<name> (register_and_online under tenacity)
        └── metrics HTTP server (optional, own thread)
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Callable
from typing import NoReturn

import tenacity
import uvloop

from .client import ThingAccessClient, create_session, destroy, get_config
from .config.logging import configure_logging
from .config.settings import RuntimeConfig, load_runtime_config
from .errors import ThingAccessError
from .metrics import BusMetrics, PrometheusExporter
from .services.driver_config import DriverConfigManager
from .services.session import Session
from .services.thing_access import ThingCallbacks
from .thing_info import DriverConfig, ThingInfo

logger = logging.getLogger("thingaccess")

ThingFactory = Callable[[ThingInfo], ThingCallbacks]


class ThingAccessDaemon:
    """Composition root owning the session and every thing client.

    Attributes:
        config: Runtime configuration loaded from the environment.
        session: The process-wide bus session.
        config_manager: Access to ``gw_driverconfig_<module>``.
        clients: One client per thing listed in the driver config.
        exporter: Optional Prometheus exporter.
    """

    def __init__(
        self,
        config: RuntimeConfig,
        thing_factory: ThingFactory,
        *,
        session: Session | None = None,
    ) -> None:
        self.config = config
        self.metrics: BusMetrics | None = BusMetrics(config.module_name) if config.metrics_enabled else None
        self.session = session or create_session(config, metrics=self.metrics)
        self.config_manager = DriverConfigManager(self.session)
        self.clients: list[ThingAccessClient] = []
        self.driver_config: DriverConfig | None = None
        self.latest_config: str | None = None
        self.exporter: PrometheusExporter | None = None
        if self.metrics is not None:
            self.exporter = PrometheusExporter(self.metrics, config.metrics_host, config.metrics_port)
        self._thing_factory = thing_factory
        self._stop_event = asyncio.Event()

    def stop(self) -> None:
        """Request a graceful shutdown of :meth:`run`."""
        self._stop_event.set()

    async def start(self) -> DriverConfig:
        """Load the driver config and build one client per configured thing."""
        driver_config = await get_config(self.config_manager)
        self.driver_config = driver_config
        self.config_manager.on_changes(self._on_config_changes)
        try:
            await self.config_manager.listen_changes()
        except (ThingAccessError, OSError) as exc:
            logger.warning("Could not subscribe to driver config changes: %s", exc)

        for info in driver_config.things:
            self.clients.append(ThingAccessClient(self.session, info, self._thing_factory(info)))
        logger.info(
            "Driver config loaded.",
            extra={"things": [info.name for info in driver_config.things]},
        )
        return driver_config

    async def bring_online(self, client: ThingAccessClient) -> None:
        """Register and connect *client*, retrying with exponential back-off."""
        callbacks = self._RetryCallbacks(client.info.name, logger)
        retryer = tenacity.AsyncRetrying(
            wait=tenacity.wait_exponential(
                multiplier=self.config.retry_min_backoff,
                max=self.config.retry_max_backoff,
            ),
            retry=tenacity.retry_if_exception_type((ThingAccessError, OSError)),
            stop=tenacity.stop_never,
            before_sleep=callbacks.before_sleep,
            reraise=True,
        )
        async for attempt in retryer:
            with attempt:
                await client.register_and_online()
        logger.info("Thing %s is online as %s.", client.info.name, client.device_id)

    async def shutdown(self) -> None:
        """Clean every client up, then close the session if it is still open."""
        for client in self.clients:
            try:
                await client.cleanup()
            except (ThingAccessError, OSError) as exc:
                logger.error("Cleanup of %s failed: %s", client.info.name, exc)
        self.clients.clear()
        try:
            await destroy(self.session)
        except (ThingAccessError, OSError) as exc:
            logger.error("Session finalize failed: %s", exc)
        logger.info("Thing access daemon stopped.")

    async def run(self) -> None:
        """Main async entry point."""
        try:
            await self.start()
            if self.exporter is not None:
                self.exporter.start()
            online_task = asyncio.create_task(self._bring_all_online(), name="bring-online")
            stop_task = asyncio.create_task(self._stop_event.wait(), name="stop-wait")
            try:
                await asyncio.wait({online_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
                if online_task.done():
                    online_task.result()
                    await stop_task
            finally:
                for task in (online_task, stop_task):
                    task.cancel()
                await asyncio.gather(online_task, stop_task, return_exceptions=True)
        finally:
            if self.exporter is not None:
                self.exporter.stop()
            await self.shutdown()

    async def _bring_all_online(self) -> None:
        async with asyncio.TaskGroup() as task_group:
            for client in self.clients:
                task_group.create_task(self.bring_online(client), name=f"thing-{client.info.name}")

    def _on_config_changes(self, value: str) -> None:
        self.latest_config = value
        logger.info("Driver config changed; restart the driver to apply it.")
        logger.debug("New driver config: %s", value)

    class _RetryCallbacks:
        """Helper to avoid nested functions in the retry loop."""

        __slots__ = ("name", "log")

        def __init__(self, name: str, log: logging.Logger):
            self.name = name
            self.log = log

        def before_sleep(self, retry_state: tenacity.RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            self.log.error("Bringing %s online failed (%s); retrying in %.1fs", self.name, exc, delay)


async def _serve(daemon: ThingAccessDaemon) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, daemon.stop)
    await daemon.run()


def run(thing_factory: ThingFactory) -> NoReturn:  # pragma: no cover (Entry point wrapper)
    """Run a driver process until SIGTERM/SIGINT, then exit."""
    try:
        config = load_runtime_config()
    except ValueError as exc:
        logging.basicConfig(level=logging.INFO)
        logger.critical("Invalid runtime configuration: %s", exc)
        sys.exit(1)
    configure_logging(config)

    logger.info("Starting thing access driver %s on %s.", config.module_name, config.bus_address)

    try:
        daemon = ThingAccessDaemon(config, thing_factory)
        asyncio.run(_serve(daemon), loop_factory=uvloop.new_event_loop)
        sys.exit(0)
    except KeyboardInterrupt:
        logger.info("Driver interrupted by user.")
        sys.exit(0)
    except ThingAccessError as exc:
        logger.critical("Driver aborted (%s): %s", exc.kind or "runtime", exc)
        sys.exit(1)
    except ExceptionGroup as exc_group:
        for group_exc in exc_group.exceptions:
            logger.critical("Fatal error in task group: %s", group_exc, exc_info=group_exc)
        sys.exit(1)
    except OSError as exc:
        logger.critical("System/OS error during driver execution: %s", exc, exc_info=True)
        sys.exit(1)


__all__ = ["ThingAccessDaemon", "ThingFactory", "run"]
