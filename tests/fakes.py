"""In-memory bus doubles and shared test data."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from thingaccess.const import CONFIG_SERVICE_NAME, DIMU_SERVICE_NAME, NAME_REPLY_PRIMARY_OWNER
from thingaccess.transport.channel import CallResult, Handler, InterfaceDescriptor, SignalMessage

MODULE_NAME = "demo_driver"
PRODUCT_KEY = "pk1"
DEVICE_ID = "dev-1"

TSL_JSON = '{"schema":"https://iot.example/tsl","profile":{"productKey":"pk1"},"properties":[]}'
TSL_EXT_JSON = '{"profile":{"productKey":"pk1"},"properties":[{"identifier":"temperature"}]}'
DRIVER_CONFIG_JSON = (
    '{"deviceList":[{"productKey":"pk1","deviceName":"dev1","custom":{"port":1}},'
    '{"productKey":"pk2","deviceName":"dev2"}],"config":{"interval":5},"extra":true}'
)

OK_JSON = '{"code":0,"message":"success"}'

Reply = CallResult | Callable[..., CallResult]


def ok_result(params: str | None = None) -> CallResult:
    if params is None:
        return CallResult.success(OK_JSON)
    return CallResult.success(f'{{"code":0,"message":"success","params":{params}}}')


def error_result(code: int = 1, message: str = "remote failure") -> CallResult:
    return CallResult.success(f'{{"code":{code},"message":"{message}"}}')


class FakeRemoteInterface:
    """Remote interface double with per-member replies and a call log."""

    def __init__(self, name: str, log: list[str]) -> None:
        self.name = name
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.replies: dict[str, Reply] = {}
        self.default: Reply = ok_result()
        self._log = log

    def reply(self, member: str, reply: Reply) -> None:
        self.replies[member] = reply

    def call_count(self, member: str) -> int:
        return sum(1 for called, _ in self.calls if called == member)

    def args_for(self, member: str) -> list[tuple[Any, ...]]:
        return [args for called, args in self.calls if called == member]

    async def call(self, member: str, *args: Any) -> CallResult:
        self.calls.append((member, args))
        self._log.append(f"call:{member}")
        await asyncio.sleep(0)
        reply = self.replies.get(member, self.default)
        if callable(reply):
            return reply(*args)
        return reply


class FakeBusChannel:
    """In-memory bus channel recording every interaction."""

    def __init__(self) -> None:
        self.log: list[str] = []
        self.dimu = FakeRemoteInterface(DIMU_SERVICE_NAME, self.log)
        self.config_manager = FakeRemoteInterface(CONFIG_SERVICE_NAME, self.log)
        self.connected = False
        self.connect_calls = 0
        self.close_calls = 0
        self.connect_error: BaseException | None = None
        self.names: set[str] = set()
        self.requested: list[str] = []
        self.released: list[str] = []
        self.request_replies: dict[str, int] = {}
        self.export_errors: dict[str, Exception] = {}
        self.release_errors: dict[str, BaseException] = {}
        self.exported: dict[tuple[str, str], tuple[dict[str, Handler], InterfaceDescriptor]] = {}
        self.sent: list[SignalMessage] = []
        self.listeners: list[Callable[[BaseException], None]] = []

    async def connect(self) -> None:
        self.connect_calls += 1
        self.log.append("connect")
        await asyncio.sleep(0)
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def add_error_listener(self, listener: Callable[[BaseException], None]) -> None:
        self.listeners.append(listener)

    async def get_interface(self, service_name: str) -> FakeRemoteInterface:
        return {DIMU_SERVICE_NAME: self.dimu, CONFIG_SERVICE_NAME: self.config_manager}[service_name]

    async def request_name(self, name: str, flags: int) -> int:
        self.requested.append(name)
        self.log.append(f"request_name:{name}")
        reply = self.request_replies.get(name, NAME_REPLY_PRIMARY_OWNER)
        if reply == NAME_REPLY_PRIMARY_OWNER:
            self.names.add(name)
        return reply

    async def release_name(self, name: str) -> None:
        self.released.append(name)
        self.log.append(f"release_name:{name}")
        error = self.release_errors.get(name)
        if error is not None:
            raise error
        self.names.discard(name)

    def export_interface(self, handlers: dict[str, Handler], path: str, descriptor: InterfaceDescriptor) -> None:
        if descriptor.name in self.export_errors:
            raise self.export_errors[descriptor.name]
        self.log.append(f"export:{descriptor.name}")
        self.exported[(path, descriptor.name)] = (dict(handlers), descriptor)

    def unexport_interface(self, path: str, interface_name: str) -> None:
        self.exported.pop((path, interface_name), None)

    def handlers_for(self, interface_name: str) -> dict[str, Handler]:
        for (_, name), (handlers, _) in self.exported.items():
            if name == interface_name:
                return handlers
        raise KeyError(interface_name)

    def send_message(self, message: SignalMessage) -> None:
        if not self.connected:
            raise ConnectionError("not connected")
        self.sent.append(message)

    def close(self) -> None:
        self.close_calls += 1
        self.connected = False
