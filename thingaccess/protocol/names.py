"""Bus name, object path and config key helpers.

This module is the single place where service names and config keys are
built. Avoid hardcoding them elsewhere.
"""

from __future__ import annotations

from ..const import (
    DEVICE_SERVICE_PREFIX,
    DRIVER_CONFIG_KEY_FORMAT,
    MODULE_SERVICE_PREFIX,
    TSL_EXT_INFO_KEY_FORMAT,
    TSL_KEY_FORMAT,
)


def object_path(service_name: str) -> str:
    """e.g. iot.device.id42 -> /iot/device/id42"""
    cleaned = service_name.strip(".")
    if not cleaned:
        raise ValueError("service name cannot be empty")
    return "/" + cleaned.replace(".", "/")


def module_service_name(module_name: str) -> str:
    """e.g. iot.driver.demo"""
    return f"{MODULE_SERVICE_PREFIX}{module_name}"


def device_service_name(device_id: str) -> str:
    """e.g. iot.device.id42"""
    return f"{DEVICE_SERVICE_PREFIX}{device_id}"


def driver_config_key(module_name: str) -> str:
    return DRIVER_CONFIG_KEY_FORMAT.format(module=module_name)


def tsl_key(product_key: str) -> str:
    return TSL_KEY_FORMAT.format(product_key=product_key)


def tsl_ext_info_key(product_key: str) -> str:
    return TSL_EXT_INFO_KEY_FORMAT.format(product_key=product_key)


def parse_selector(selector: str | None) -> tuple[str, str]:
    """Split a ``key=value`` selector; anything malformed yields empty parts."""
    if not selector or "=" not in selector:
        return "", ""
    key, _, value = selector.partition("=")
    return key.strip(), value.strip()


__all__ = [
    "device_service_name",
    "driver_config_key",
    "module_service_name",
    "object_path",
    "parse_selector",
    "tsl_ext_info_key",
    "tsl_key",
]
