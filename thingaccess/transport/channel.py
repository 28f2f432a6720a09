"""Bus channel contract used by the session layer.

The channel is the only piece that knows about the concrete IPC bus. Remote
calls never raise for remote-side failures: they resolve to a
:class:`CallResult` carrying either the reply value or the error, so callers
decide how each failure maps onto their own rollback rules.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Protocol

import msgspec

Handler = Callable[..., Any]
ErrorListener = Callable[[BaseException], None]


class CallResult(msgspec.Struct, frozen=True):
    """Outcome of a bus method call: exactly one of ``value``/``error`` is meaningful."""

    value: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None) -> CallResult:
        return cls(value=value)

    @classmethod
    def failure(cls, error: BaseException) -> CallResult:
        return cls(error=error)

    def unwrap(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.value


class MethodSpec(msgspec.Struct, frozen=True):
    """Signature of an exported method (bus type codes)."""

    in_signature: str
    out_signature: str
    in_names: tuple[str, ...] = ()
    out_names: tuple[str, ...] = ()


class SignalSpec(msgspec.Struct, frozen=True):
    signature: str
    names: tuple[str, ...] = ()


class InterfaceDescriptor(msgspec.Struct, frozen=True):
    """Description of a local interface exported on the bus."""

    name: str
    methods: dict[str, MethodSpec] = msgspec.field(default_factory=dict)
    signals: dict[str, SignalSpec] = msgspec.field(default_factory=dict)


class SignalMessage(msgspec.Struct, frozen=True):
    """Fire-and-forget signal addressed to a bus destination."""

    destination: str
    path: str
    interface: str
    member: str
    signature: str = ""
    body: tuple[Any, ...] = ()


class RemoteInterface(Protocol):
    """Proxy onto a remote service interface."""

    name: str

    async def call(self, member: str, *args: Any) -> CallResult: ...


class BusChannel(Protocol):
    """Surface required from the IPC bus by :class:`~thingaccess.services.session.Session`."""

    async def connect(self) -> None: ...

    def add_error_listener(self, listener: ErrorListener) -> None: ...

    async def get_interface(self, service_name: str) -> RemoteInterface: ...

    async def request_name(self, name: str, flags: int) -> int: ...

    async def release_name(self, name: str) -> None: ...

    def export_interface(
        self,
        handlers: Mapping[str, Handler],
        path: str,
        descriptor: InterfaceDescriptor,
    ) -> None: ...

    def unexport_interface(self, path: str, interface_name: str) -> None: ...

    def send_message(self, message: SignalMessage) -> None: ...

    def close(self) -> None: ...


ChannelFactory = Callable[[], BusChannel]

__all__ = [
    "BusChannel",
    "CallResult",
    "ChannelFactory",
    "ErrorListener",
    "Handler",
    "InterfaceDescriptor",
    "MethodSpec",
    "RemoteInterface",
    "SignalMessage",
    "SignalSpec",
]
