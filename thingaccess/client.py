"""Public client API for connecting things to the edge gateway."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from .config.settings import RuntimeConfig
from .metrics import BusMetrics
from .services.driver_config import DriverConfigManager
from .services.session import Session
from .services.thing_access import ThingAccess, ThingCallbacks
from .thing_info import DriverConfig, ThingInfo
from .transport.dbus import DbusBusChannel

logger = logging.getLogger("thingaccess.client")


def create_session(config: RuntimeConfig, *, metrics: BusMetrics | None = None) -> Session:
    """Build the process session on top of the gateway's edge bus."""
    return Session(config, DbusBusChannel(config.bus_address), metrics=metrics)


async def get_config(manager: DriverConfigManager) -> DriverConfig:
    """Fetch and parse this driver's configuration."""
    return DriverConfig.parse(await manager.get_config())


async def destroy(session: Session) -> None:
    """Finalize *session* if it is still open."""
    if session.bus is None:
        logger.debug("Session already closed; nothing to destroy.")
        return
    await session.finalize()


class ThingAccessClient:
    """Facade over :class:`ThingAccess` that sets the session up on demand.

    Typical use::

        client = ThingAccessClient(session, thing_info, callbacks)
        await client.register_and_online()
        await client.report_properties({"temperature": 41})
        ...
        await client.cleanup()
    """

    def __init__(
        self,
        session: Session,
        config: ThingInfo | Mapping[str, Any],
        callbacks: ThingCallbacks,
    ) -> None:
        info = config if isinstance(config, ThingInfo) else ThingInfo.from_config(config)
        self.impl = ThingAccess(session, info, callbacks)

    @property
    def info(self) -> ThingInfo:
        return self.impl.info

    @property
    def device_id(self) -> str | None:
        return self.impl.device_id

    @property
    def connected(self) -> bool:
        return self.impl.connected

    async def setup(self) -> None:
        await self.impl.setup()

    async def register(self) -> str:
        await self.setup()
        return await self.impl.register()

    async def online(self) -> None:
        await self.register()
        await self.impl.connect()

    async def register_and_online(self) -> None:
        await self.online()

    async def offline(self) -> None:
        await self.setup()
        await self.impl.disconnect()

    async def report_event(self, event_name: str, args: Any) -> None:
        await self.setup()
        self.impl.signal_event(event_name, args)

    async def report_properties(self, properties: Mapping[str, Any]) -> None:
        await self.setup()
        self.impl.signal_properties(properties)

    async def get_tsl(self) -> str:
        await self.setup()
        return await self.impl.get_tsl()

    async def get_tsl_ext_info(self) -> str:
        await self.setup()
        return await self.impl.get_tsl_ext_info()

    async def unregister(self) -> None:
        await self.setup()
        await self.impl.unregister()

    async def cleanup(self) -> None:
        await self.impl.cleanup()


__all__ = ["ThingAccessClient", "create_session", "destroy", "get_config"]
