"""JSON envelopes exchanged with the gateway over the edge bus.

Every request/reply payload is a JSON string. Replies follow the
``{"code": 0, "message": "...", "params": {...}}`` convention where a nonzero
code is a failure carrying ``message``.
"""

from __future__ import annotations

from typing import Any

import msgspec

from ..const import RESULT_SUCCESS
from ..errors import ThingAccessError
from ..transport.channel import CallResult

_JSON_DECODER = msgspec.json.Decoder()


class ResultEnvelope(msgspec.Struct, frozen=True):
    code: int = RESULT_SUCCESS
    message: str = ""
    params: Any = None


class DriverRegistration(msgspec.Struct, frozen=True):
    driverLocalId: str
    driverStartupTime: str


class DriverUnregistration(msgspec.Struct, frozen=True):
    driverLocalId: str


class DriverRequest(msgspec.Struct, frozen=True):
    """Driver (un)registration request, wrapped as ``{"params": {...}}``."""

    params: Any


class DeviceRegistration(msgspec.Struct, frozen=True, omit_defaults=True):
    productKey: str
    driverName: str
    deviceProfile: Any
    productMD5: str
    isLocal: str
    deviceName: str | None = None
    deviceLocalId: str | None = None


class DeviceStartup(msgspec.Struct, frozen=True):
    deviceCloudId: str


class DeviceList(msgspec.Struct, frozen=True):
    devNum: int
    devList: list[str]


class PropertyValue(msgspec.Struct, frozen=True):
    value: Any
    time: int


class EventParams(msgspec.Struct, frozen=True):
    time: int
    values: Any


class EventPayload(msgspec.Struct, frozen=True):
    params: EventParams


class CallbackResult(msgspec.Struct, frozen=True):
    """Normalised return value of a user callback."""

    code: int = RESULT_SUCCESS
    message: str = "success"
    params: Any = None
    data: Any = None


class ServiceCallResult(msgspec.Struct, frozen=True):
    code: int
    message: str
    data: Any = None


class ConnectNotice(msgspec.Struct, frozen=True):
    code: int | None = None
    message: str = ""


def encode_json(value: Any) -> str:
    return msgspec.json.encode(value).decode("utf-8")


def decode_json(text: str | bytes) -> Any:
    """Decode JSON text, raising :class:`msgspec.DecodeError` on malformed input."""
    return _JSON_DECODER.decode(text)


def unwrap_result(result: CallResult) -> ResultEnvelope:
    """Validate a default gateway reply and return its envelope.

    Transport errors are re-raised as-is; an empty reply, a non-JSON reply or
    a nonzero ``code`` raise :class:`ThingAccessError`.
    """
    raw = result.unwrap()
    if not raw or not isinstance(raw, (str, bytes)):
        raise ThingAccessError("Illegal result from remote service.")
    try:
        envelope = msgspec.json.decode(raw, type=ResultEnvelope)
    except msgspec.DecodeError as exc:
        raise ThingAccessError("Default result is not in JSON format.") from exc
    if envelope.code != RESULT_SUCCESS:
        raise ThingAccessError(envelope.message or f"Remote call failed with code {envelope.code}.")
    return envelope


def unwrap_code(result: CallResult, operation: str) -> None:
    """Validate a bare integer status reply (config subscriptions)."""
    code = result.unwrap()
    if code != RESULT_SUCCESS:
        raise ThingAccessError(f"{operation} failed: errno = {code}")


def unwrap_config_value(result: CallResult) -> str:
    """Validate a ``get_config`` reply of ``(code, value)`` and return the JSON text."""
    reply = result.unwrap()
    if not isinstance(reply, (tuple, list)) or len(reply) != 2:
        raise ThingAccessError("Illegal result from remote service.")
    code, value = reply
    if code != RESULT_SUCCESS:
        raise ThingAccessError(f"Get config failed: errno = {code}")
    if not isinstance(value, str):
        raise ThingAccessError("Config value is not in JSON format.")
    try:
        decode_json(value)
    except msgspec.DecodeError as exc:
        raise ThingAccessError("Config value is not in JSON format.") from exc
    return value


__all__ = [
    "CallbackResult",
    "ConnectNotice",
    "DeviceList",
    "DeviceRegistration",
    "DeviceStartup",
    "DriverRegistration",
    "DriverRequest",
    "DriverUnregistration",
    "EventParams",
    "EventPayload",
    "PropertyValue",
    "ResultEnvelope",
    "ServiceCallResult",
    "decode_json",
    "encode_json",
    "unwrap_code",
    "unwrap_config_value",
    "unwrap_result",
]
