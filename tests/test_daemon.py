"""Tests for the driver process runner."""

from __future__ import annotations

import asyncio
import json
import logging
from unittest.mock import MagicMock

import pytest

from tests.fakes import MODULE_NAME, FakeBusChannel, error_result, ok_result
from thingaccess.config.settings import RuntimeConfig
from thingaccess.daemon import ThingAccessDaemon
from thingaccess.errors import ErrorKind, ThingAccessError
from thingaccess.services.session import Session
from thingaccess.thing_info import ThingInfo
from thingaccess.transport.channel import CallResult


@pytest.fixture()
def daemon_config() -> RuntimeConfig:
    return RuntimeConfig(module_name=MODULE_NAME, retry_min_backoff=0.001, retry_max_backoff=0.002)


@pytest.fixture()
def factory(callbacks: MagicMock) -> MagicMock:
    return MagicMock(return_value=callbacks)


@pytest.fixture()
def daemon(daemon_config: RuntimeConfig, fake_channel: FakeBusChannel, factory: MagicMock) -> ThingAccessDaemon:
    def _register(payload: str) -> CallResult:
        name = json.loads(payload)["deviceName"]
        return ok_result(f'{{"deviceCloudId":"id-{name}"}}')

    fake_channel.dimu.reply("registerDevice", _register)
    return ThingAccessDaemon(daemon_config, factory, session=Session(daemon_config, fake_channel))


def test_metrics_disabled_by_default(daemon: ThingAccessDaemon) -> None:
    assert daemon.metrics is None
    assert daemon.exporter is None


def test_metrics_enabled_builds_exporter(fake_channel: FakeBusChannel, factory: MagicMock) -> None:
    config = RuntimeConfig(module_name=MODULE_NAME, metrics_enabled=True, metrics_port=0)

    daemon = ThingAccessDaemon(config, factory, session=Session(config, fake_channel))

    assert daemon.metrics is not None
    assert daemon.exporter is not None


@pytest.mark.asyncio
async def test_start_builds_one_client_per_thing(
    daemon: ThingAccessDaemon, fake_channel: FakeBusChannel, factory: MagicMock
) -> None:
    driver_config = await daemon.start()

    assert [client.info.name for client in daemon.clients] == ["dev1", "dev2"]
    assert factory.call_args_list[0].args[0] == ThingInfo(product_key="pk1", device_name="dev1", custom={"port": 1})
    assert driver_config.config == {"interval": 5}
    assert daemon.config_manager.listening


@pytest.mark.asyncio
async def test_start_tolerates_subscription_failure(
    daemon: ThingAccessDaemon, fake_channel: FakeBusChannel, caplog: pytest.LogCaptureFixture
) -> None:
    fake_channel.config_manager.reply("subscribe_config", CallResult.success(9))

    await daemon.start()

    assert len(daemon.clients) == 2
    assert "Could not subscribe" in caplog.text


@pytest.mark.asyncio
async def test_start_fails_without_driver_config(
    daemon: ThingAccessDaemon, config_values: dict[str, str]
) -> None:
    config_values.clear()

    with pytest.raises(ThingAccessError) as excinfo:
        await daemon.start()
    assert excinfo.value.kind is ErrorKind.GET_CONFIG


@pytest.mark.asyncio
async def test_config_changes_are_recorded(daemon: ThingAccessDaemon) -> None:
    await daemon.start()

    daemon.session.notify_config(daemon.config_manager.key, '{"deviceList":[]}')

    assert daemon.latest_config == '{"deviceList":[]}'


@pytest.mark.asyncio
async def test_bring_online_retries_until_success(
    daemon: ThingAccessDaemon, fake_channel: FakeBusChannel, caplog: pytest.LogCaptureFixture
) -> None:
    await daemon.start()
    client = daemon.clients[0]
    attempts = iter([error_result(message="dimu busy"), error_result(message="dimu busy")])
    fake_channel.dimu.reply("startupDevice", lambda payload: next(attempts, ok_result()))

    with caplog.at_level(logging.ERROR, logger="thingaccess"):
        await daemon.bring_online(client)

    assert client.connected
    assert client.device_id == "id-dev1"
    assert fake_channel.dimu.call_count("startupDevice") == 3
    assert fake_channel.dimu.call_count("registerDevice") == 1
    assert "retrying" in caplog.text


@pytest.mark.asyncio
async def test_shutdown_cleans_up_and_closes_session(
    daemon: ThingAccessDaemon, fake_channel: FakeBusChannel
) -> None:
    await daemon.start()
    for client in daemon.clients:
        await daemon.bring_online(client)

    await daemon.shutdown()

    assert daemon.clients == []
    assert fake_channel.dimu.call_count("shutdownDevice") == 2
    assert fake_channel.dimu.call_count("unregisterDriver") == 1
    assert daemon.session.bus is None


@pytest.mark.asyncio
async def test_stop_interrupts_things_that_keep_failing(
    daemon: ThingAccessDaemon, fake_channel: FakeBusChannel
) -> None:
    fake_channel.dimu.reply("registerDevice", error_result(message="gateway busy"))
    task = asyncio.create_task(daemon.run())
    for _ in range(200):
        if fake_channel.dimu.call_count("registerDevice") >= 4:
            break
        await asyncio.sleep(0.005)
    assert fake_channel.dimu.call_count("registerDevice") >= 4
    assert not task.done()

    daemon.stop()
    await asyncio.wait_for(task, timeout=1)

    assert daemon.clients == []
    assert daemon.session.bus is None
    assert fake_channel.dimu.call_count("unregisterDriver") == 1


@pytest.mark.asyncio
async def test_run_serves_metrics_until_stopped(fake_channel: FakeBusChannel, factory: MagicMock) -> None:
    config = RuntimeConfig(
        module_name=MODULE_NAME,
        metrics_enabled=True,
        metrics_host="127.0.0.1",
        metrics_port=0,
        retry_min_backoff=0.001,
        retry_max_backoff=0.002,
    )
    fake_channel.dimu.reply(
        "registerDevice", lambda payload: ok_result(f'{{"deviceCloudId":"id-{json.loads(payload)["deviceName"]}"}}')
    )
    daemon = ThingAccessDaemon(config, factory, session=Session(config, fake_channel))
    assert daemon.exporter is not None

    task = asyncio.create_task(daemon.run())
    for _ in range(200):
        if daemon.exporter.running:
            break
        await asyncio.sleep(0.005)
    assert daemon.exporter.running

    daemon.stop()
    await asyncio.wait_for(task, timeout=2)

    assert not daemon.exporter.running


@pytest.mark.asyncio
async def test_run_until_stopped(daemon: ThingAccessDaemon, fake_channel: FakeBusChannel) -> None:
    task = asyncio.create_task(daemon.run())
    for _ in range(200):
        if len(daemon.session.connected_things) == 2:
            break
        await asyncio.sleep(0.005)
    assert daemon.session.connected_things == {"id-dev1", "id-dev2"}

    daemon.stop()
    await asyncio.wait_for(task, timeout=1)

    assert fake_channel.dimu.call_count("unregisterDriver") == 1
    assert daemon.session.bus is None


@pytest.mark.asyncio
async def test_run_shuts_down_after_start_failure(
    daemon: ThingAccessDaemon, fake_channel: FakeBusChannel
) -> None:
    fake_channel.dimu.reply("registerDriver", error_result(message="refused"))

    with pytest.raises(ThingAccessError):
        await daemon.run()

    assert daemon.session.bus is None
