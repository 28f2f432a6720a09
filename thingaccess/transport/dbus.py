"""Edge bus channel implemented with dbus-fast (pure asyncio).

Bus type codes in the exported interfaces are written as string annotations,
which is how dbus-fast reads method signatures; this module therefore does
not use postponed evaluation of annotations.
"""

import asyncio
import inspect
import logging
from collections.abc import Mapping
from typing import Any, Optional

from dbus_fast import DBusError, ErrorType, Message, MessageType, NameFlag, ReleaseNameReply
from dbus_fast.aio import MessageBus
from dbus_fast.service import ServiceInterface, method, signal

from ..protocol.names import object_path
from .channel import CallResult, ErrorListener, Handler, InterfaceDescriptor, SignalMessage

logger = logging.getLogger("thingaccess.transport.dbus")

_TYPE_CODES: tuple[tuple[type, str], ...] = (
    (bool, "b"),
    (int, "i"),
    (float, "d"),
    (str, "s"),
)


def signature_of(args: tuple[Any, ...]) -> str:
    """Derive the bus signature for plain scalar arguments."""
    codes: list[str] = []
    for arg in args:
        for py_type, code in _TYPE_CODES:
            if isinstance(arg, py_type):
                codes.append(code)
                break
        else:
            raise TypeError(f"Unsupported bus argument type: {type(arg).__name__}")
    return "".join(codes)


class _HandlerInterface(ServiceInterface):
    """Exported interface whose members delegate to plain handler callables."""

    def __init__(self, name: str, handlers: Mapping[str, Handler]) -> None:
        super().__init__(name)
        self._handlers = dict(handlers)

    async def _dispatch(self, member: str, *args: Any) -> Any:
        handler = self._handlers.get(member)
        if handler is None:
            raise DBusError(ErrorType.UNKNOWN_METHOD, f"{member} is not implemented by {self.name}")
        result = handler(*args)
        if inspect.isawaitable(result):
            result = await result
        return result


class _ModuleInterface(_HandlerInterface):
    @method(name="getDeviceList")
    async def get_device_list(self, selector: "s") -> "s":
        return await self._dispatch("getDeviceList", selector)

    @method(name="notify_config")
    async def notify_config(self, key: "s", value: "s") -> "i":
        result = await self._dispatch("notify_config", key, value)
        return int(result or 0)


class _ThingInterface(_HandlerInterface):
    @method(name="callServices")
    async def call_services(self, service_name: "s", service_args: "s") -> "s":
        return await self._dispatch("callServices", service_name, service_args)

    @method(name="connectResultNotify")
    async def connect_result_notify(self, result: "s") -> "s":
        return await self._dispatch("connectResultNotify", result) or ""

    @signal(name="propertiesChanged")
    def properties_changed(self, properties_info: "s") -> "s":
        return properties_info


class DbusRemoteInterface:
    """Proxy issuing raw method calls against one remote interface."""

    def __init__(self, bus: MessageBus, service_name: str, path: str, name: str) -> None:
        self._bus = bus
        self.service_name = service_name
        self.path = path
        self.name = name

    async def call(self, member: str, *args: Any) -> CallResult:
        try:
            reply = await self._bus.call(
                Message(
                    destination=self.service_name,
                    path=self.path,
                    interface=self.name,
                    member=member,
                    signature=signature_of(args),
                    body=list(args),
                )
            )
        except (DBusError, OSError, EOFError, TypeError) as exc:
            return CallResult.failure(exc)

        if reply is None:
            return CallResult.failure(ConnectionError(f"No reply for {self.name}.{member}"))
        if reply.message_type == MessageType.ERROR:
            text = reply.body[0] if reply.body else ""
            return CallResult.failure(DBusError(reply.error_name or ErrorType.FAILED, str(text), reply))
        body = list(reply.body)
        if not body:
            return CallResult.success(None)
        if len(body) == 1:
            return CallResult.success(body[0])
        return CallResult.success(tuple(body))


class DbusBusChannel:
    """:class:`~thingaccess.transport.channel.BusChannel` over the gateway's edge bus."""

    def __init__(self, bus_address: str) -> None:
        self._bus_address = bus_address
        self._bus: Optional[MessageBus] = None
        self._listeners: list[ErrorListener] = []
        self._exported: dict[tuple[str, str], ServiceInterface] = {}
        self._watch_task: Optional[asyncio.Task[None]] = None
        self._closing = False

    async def connect(self) -> None:
        logger.info("Connect to edge bus %s.", self._bus_address)
        self._closing = False
        self._bus = await MessageBus(bus_address=self._bus_address).connect()
        self._watch_task = asyncio.create_task(self._watch_disconnect(), name="edge-bus-watch")

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._listeners.append(listener)

    async def get_interface(self, service_name: str) -> DbusRemoteInterface:
        bus = self._require_bus()
        path = object_path(service_name)
        # Introspection fails fast when the gateway service is not on the bus.
        await bus.introspect(service_name, path)
        return DbusRemoteInterface(bus, service_name, path, service_name)

    async def request_name(self, name: str, flags: int) -> int:
        reply = await self._require_bus().request_name(name, NameFlag(flags))
        return int(reply)

    async def release_name(self, name: str) -> None:
        reply = await self._require_bus().release_name(name)
        if reply != ReleaseNameReply.RELEASED:
            raise DBusError(ErrorType.FAILED, f"Release of {name} returned {reply.name}")

    def export_interface(
        self,
        handlers: Mapping[str, Handler],
        path: str,
        descriptor: InterfaceDescriptor,
    ) -> None:
        bus = self._require_bus()
        if "callServices" in descriptor.methods:
            iface: ServiceInterface = _ThingInterface(descriptor.name, handlers)
        elif "getDeviceList" in descriptor.methods:
            iface = _ModuleInterface(descriptor.name, handlers)
        else:
            raise ValueError(f"No exported interface matches descriptor {descriptor.name}")
        key = (path, descriptor.name)
        previous = self._exported.pop(key, None)
        if previous is not None:
            bus.unexport(path, previous)
        bus.export(path, iface)
        self._exported[key] = iface

    def unexport_interface(self, path: str, interface_name: str) -> None:
        iface = self._exported.pop((path, interface_name), None)
        if iface is not None and self._bus is not None:
            self._bus.unexport(path, iface)

    def send_message(self, message: SignalMessage) -> None:
        future = self._require_bus().send(
            Message(
                message_type=MessageType.SIGNAL,
                destination=message.destination,
                path=message.path,
                interface=message.interface,
                member=message.member,
                signature=message.signature,
                body=list(message.body),
            )
        )
        future.add_done_callback(self._on_send_done)

    def close(self) -> None:
        self._closing = True
        self._exported.clear()
        if self._watch_task is not None:
            self._watch_task.cancel()
            self._watch_task = None
        if self._bus is not None:
            self._bus.disconnect()
            self._bus = None

    def _require_bus(self) -> MessageBus:
        if self._bus is None:
            raise ConnectionError("Edge bus is not connected.")
        return self._bus

    async def _watch_disconnect(self) -> None:
        bus = self._bus
        if bus is None:
            return
        error: BaseException
        try:
            await bus.wait_for_disconnect()
            error = ConnectionError("Edge bus connection closed.")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = exc
        if self._closing:
            return
        for listener in list(self._listeners):
            listener(error)

    @staticmethod
    def _on_send_done(future: "asyncio.Future[Any]") -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.warning("Signal delivery failed: %s", exc)


__all__ = ["DbusBusChannel", "DbusRemoteInterface", "signature_of"]
