"""Pytest configuration for thing-access tests."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.fakes import (
    DEVICE_ID,
    DRIVER_CONFIG_JSON,
    MODULE_NAME,
    PRODUCT_KEY,
    TSL_EXT_JSON,
    TSL_JSON,
    FakeBusChannel,
    ok_result,
)
from thingaccess.config.settings import RuntimeConfig
from thingaccess.protocol.names import driver_config_key, tsl_ext_info_key, tsl_key
from thingaccess.services.session import Session
from thingaccess.thing_info import ThingInfo
from thingaccess.transport.channel import CallResult


@pytest.fixture(scope="session")
def event_loop_policy():
    """Provide uvloop event loop policy for pytest-asyncio."""
    import warnings

    import uvloop

    with warnings.catch_warnings():
        warnings.filterwarnings(
            "ignore",
            message=".*AbstractEventLoopPolicy.*",
            category=DeprecationWarning,
        )
        policy = uvloop.EventLoopPolicy()
    return policy


@pytest.fixture(autouse=True)
def reset_logging_handlers():
    """Close and remove all logging handlers after each test to prevent ResourceWarnings."""
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        try:
            handler.close()
        except (OSError, RuntimeError):
            pass
        root.removeHandler(handler)


@pytest.fixture()
def config_values() -> dict[str, str]:
    return {
        tsl_key(PRODUCT_KEY): TSL_JSON,
        tsl_ext_info_key(PRODUCT_KEY): TSL_EXT_JSON,
        tsl_key("pk2"): TSL_JSON,
        driver_config_key(MODULE_NAME): DRIVER_CONFIG_JSON,
    }


@pytest.fixture()
def fake_channel(config_values: dict[str, str]) -> FakeBusChannel:
    channel = FakeBusChannel()

    def _get_config(key: str) -> CallResult:
        if key not in config_values:
            return CallResult.success((5, ""))
        return CallResult.success((0, config_values[key]))

    channel.config_manager.reply("get_config", _get_config)
    channel.config_manager.reply("subscribe_config", CallResult.success(0))
    channel.config_manager.reply("unsubscribe_config", CallResult.success(0))
    channel.dimu.reply("registerDevice", ok_result(f'{{"deviceCloudId":"{DEVICE_ID}"}}'))
    return channel


@pytest.fixture()
def runtime_config() -> RuntimeConfig:
    return RuntimeConfig(module_name=MODULE_NAME)


@pytest.fixture()
def session(runtime_config: RuntimeConfig, fake_channel: FakeBusChannel) -> Session:
    return Session(runtime_config, fake_channel)


@pytest.fixture()
def thing_info() -> ThingInfo:
    return ThingInfo(product_key=PRODUCT_KEY, device_name="dev1")


@pytest.fixture()
def callbacks() -> MagicMock:
    mock = MagicMock()
    mock.get_properties = MagicMock(
        return_value={"code": 0, "message": "success", "params": {"temperature": 41}}
    )
    mock.set_properties = MagicMock(return_value={"code": 0, "message": "success", "params": {}})
    mock.call_service = AsyncMock(return_value={"code": 0, "message": "success", "data": {"ok": True}})
    return mock
