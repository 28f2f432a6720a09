"""Thing descriptors and the parsed driver configuration."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import msgspec

from .errors import ThingAccessError
from .protocol.envelopes import decode_json

PRODUCT_KEY = "productKey"
DEVICE_NAME = "deviceName"
LOCAL_NAME = "localName"
CUSTOM = "custom"


class ThingInfo(msgspec.Struct, frozen=True):
    """Identity of one thing as listed in the driver config."""

    product_key: str
    device_name: str | None = None
    local_name: str | None = None
    custom: Any = None

    def __post_init__(self) -> None:
        if not self.product_key:
            raise ThingAccessError(f'Can\'t find required "{PRODUCT_KEY}".')
        if not self.device_name and not self.local_name:
            raise ThingAccessError(f'Can\'t find required "{DEVICE_NAME}".')

    @property
    def name(self) -> str:
        return self.device_name or self.local_name or ""

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> ThingInfo:
        """Build from a ``deviceList`` entry (camelCase keys)."""
        return cls(
            product_key=str(config.get(PRODUCT_KEY) or ""),
            device_name=config.get(DEVICE_NAME) or None,
            local_name=config.get(LOCAL_NAME) or None,
            custom=config.get(CUSTOM),
        )


class DriverConfig(msgspec.Struct, frozen=True):
    things: list[ThingInfo]
    config: Any = None

    @classmethod
    def parse(cls, text: str) -> DriverConfig:
        try:
            document = decode_json(text)
        except (msgspec.DecodeError, TypeError) as exc:
            raise ThingAccessError("Config is not JSON string!") from exc
        if not isinstance(document, dict):
            raise ThingAccessError("Config is not JSON string!")
        devices = document.get("deviceList")
        if not isinstance(devices, list) or not devices:
            raise ThingAccessError("Could not find device information in config!")
        things: list[ThingInfo] = []
        for device in devices:
            if not isinstance(device, dict):
                raise ThingAccessError("Could not find device information in config!")
            things.append(ThingInfo.from_config(device))
        return cls(things=things, config=document.get("config"))


__all__ = ["CUSTOM", "DEVICE_NAME", "DriverConfig", "LOCAL_NAME", "PRODUCT_KEY", "ThingInfo"]
