"""Driver configuration access through the gateway config manager."""

from __future__ import annotations

import logging
from typing import Any

from ..const import CONFIG_CHANGES_EVENT
from ..errors import ErrorKind, ThingAccessError, tag_error
from ..protocol.envelopes import decode_json, encode_json, unwrap_code, unwrap_config_value
from ..protocol.names import driver_config_key
from .base import EventEmitter, Listener
from .session import NOTIFY_CONFIG_EVENT, Session

logger = logging.getLogger("thingaccess.driver_config")

# Flag passed to subscribe_config: 0 subscribes as a plain reader (not the key owner).
SUBSCRIBE_AS_READER = 0

_NORMALISED_FIELDS = ("deviceList", "config")


def normalise_driver_config(raw: str) -> str:
    """Keep only ``deviceList`` and ``config`` from a raw driver config document."""
    parsed: Any = decode_json(raw)
    if not isinstance(parsed, dict):
        raise ThingAccessError("Driver config is not a JSON object.")
    normalised = {field: parsed[field] for field in _NORMALISED_FIELDS if field in parsed}
    return encode_json(normalised)


class DriverConfigManager:
    """Reads and watches ``gw_driverconfig_<module>``."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self.key = driver_config_key(session.module_name)
        self.events = EventEmitter()

    @property
    def listening(self) -> bool:
        return self._session.events.has_listener(NOTIFY_CONFIG_EVENT, self._on_notify)

    def on_changes(self, listener: Listener) -> None:
        self.events.on(CONFIG_CHANGES_EVENT, listener)

    def off_changes(self, listener: Listener) -> None:
        self.events.off(CONFIG_CHANGES_EVENT, listener)

    async def get_config(self) -> str:
        try:
            await self._session.initialize()
            logger.info("Get driver config %s.", self.key)
            raw = unwrap_config_value(await self._session.call_config("get_config", self.key))
            return normalise_driver_config(raw)
        except Exception as exc:
            raise tag_error(exc, ErrorKind.GET_CONFIG)

    async def listen_changes(self) -> None:
        """Subscribe to config updates; each update emits ``changes`` with the raw value."""
        await self._session.initialize()
        result = await self._session.call_config(
            "subscribe_config", self._session.module_name, self.key, SUBSCRIBE_AS_READER
        )
        unwrap_code(result, "Subscribe config")
        if not self.listening:
            self._session.events.on(NOTIFY_CONFIG_EVENT, self._on_notify)
        logger.info("Listening to changes of %s.", self.key)

    async def unlisten_changes(self) -> None:
        await self._session.initialize()
        result = await self._session.call_config("unsubscribe_config", self._session.module_name, self.key)
        unwrap_code(result, "Unsubscribe config")
        self._session.events.off(NOTIFY_CONFIG_EVENT, self._on_notify)
        logger.info("Stopped listening to changes of %s.", self.key)

    def _on_notify(self, key: str, value: str) -> None:
        if key != self.key:
            return
        self.events.emit(CONFIG_CHANGES_EVENT, value)


__all__ = ["DriverConfigManager", "normalise_driver_config"]
