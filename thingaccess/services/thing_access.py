"""Per-thing lifecycle against the gateway device manager.

A :class:`ThingAccess` drives one thing through
``unset -> registered -> connected -> registered -> unset``. Each public
operation is memoised in an :class:`~thingaccess.services.base.OperationSlot`
so concurrent callers share a single RPC, and each failure is tagged with
the operation's :class:`~thingaccess.errors.ErrorKind` before it is raised.
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import logging
from collections.abc import Awaitable, Mapping
from typing import Any, Protocol, Union

import msgspec
from transitions import Machine

from ..common import now_ms
from ..const import (
    ERROR_UNKNOWN,
    PROPERTIES_CHANGED_SIGNAL,
    RESULT_SUCCESS,
    SERVICE_GET_PROPERTIES,
    SERVICE_SET_PROPERTIES,
    SUBSCRIBE_DESTINATION,
)
from ..errors import ErrorKind, PreconditionError, ThingAccessError, tag_error
from ..protocol.envelopes import (
    CallbackResult,
    ConnectNotice,
    DeviceRegistration,
    DeviceStartup,
    EventParams,
    EventPayload,
    PropertyValue,
    ResultEnvelope,
    ServiceCallResult,
    decode_json,
    encode_json,
    unwrap_config_value,
    unwrap_result,
)
from ..protocol.names import device_service_name, object_path, tsl_ext_info_key, tsl_key
from ..thing_info import ThingInfo
from ..transport.channel import InterfaceDescriptor, MethodSpec, SignalMessage, SignalSpec
from .base import OperationSlot
from .session import Session

logger = logging.getLogger("thingaccess.thing")

CallbackReturn = Union[CallbackResult, Mapping[str, Any]]
MaybeAwaitable = Union[CallbackReturn, Awaitable[CallbackReturn]]

REQUIRED_CALLBACKS = ("get_properties", "set_properties", "call_service")


class ThingCallbacks(Protocol):
    """Capabilities a thing exposes to the gateway.

    Each method returns a mapping (or :class:`CallbackResult`) with ``code``,
    ``message`` and, depending on the call, ``params`` or ``data``. Returning
    an awaitable is allowed.
    """

    def get_properties(self, keys: list[str]) -> MaybeAwaitable: ...

    def set_properties(self, properties: dict[str, Any]) -> MaybeAwaitable: ...

    def call_service(self, name: str, args: Any) -> MaybeAwaitable: ...


def validate_callbacks(callbacks: object) -> None:
    missing = [name for name in REQUIRED_CALLBACKS if not callable(getattr(callbacks, name, None))]
    if missing:
        raise ValueError(f"Illegal callbacks: missing {', '.join(missing)}")


async def _resolve_callback(value: Any) -> CallbackResult:
    if inspect.isawaitable(value):
        value = await value
    if isinstance(value, CallbackResult):
        return value
    try:
        return msgspec.convert(value, CallbackResult, strict=False)
    except msgspec.ValidationError as exc:
        raise ThingAccessError(f"Illegal callback result: {exc}") from exc


def _envelope_code(code: int) -> int:
    return RESULT_SUCCESS if code == RESULT_SUCCESS else ERROR_UNKNOWN


class ThingAccess:
    """Lifecycle of a single thing sharing the process :class:`Session`."""

    STATE_UNSET = "unset"
    STATE_REGISTERED = "registered"
    STATE_CONNECTED = "connected"

    def __init__(self, session: Session, info: ThingInfo, callbacks: ThingCallbacks) -> None:
        validate_callbacks(callbacks)
        self._session = session
        self.info = info
        self.callbacks = callbacks
        self.device_id: str | None = None
        self._interface: InterfaceDescriptor | None = None
        self._background: set[asyncio.Future[Any]] = set()

        self._setup: OperationSlot[None] = OperationSlot("setup")
        self._register: OperationSlot[str] = OperationSlot("register")
        self._connect: OperationSlot[None] = OperationSlot("connect")
        self._disconnect: OperationSlot[None] = OperationSlot("disconnect")
        self._unregister: OperationSlot[None] = OperationSlot("unregister")
        self._cleanup: OperationSlot[None] = OperationSlot("cleanup")
        self._get_tsl: OperationSlot[str] = OperationSlot("get_tsl")
        self._get_tsl_ext_info: OperationSlot[str] = OperationSlot("get_tsl_ext_info")

        self.state_machine = Machine(
            model=self,
            states=[self.STATE_UNSET, self.STATE_REGISTERED, self.STATE_CONNECTED],
            initial=self.STATE_UNSET,
            ignore_invalid_triggers=True,
            model_attribute="fsm_state",
        )
        self.state_machine.add_transition(
            trigger="mark_registered", source=self.STATE_UNSET, dest=self.STATE_REGISTERED
        )
        self.state_machine.add_transition(
            trigger="mark_connected", source=self.STATE_REGISTERED, dest=self.STATE_CONNECTED
        )
        self.state_machine.add_transition(
            trigger="mark_disconnected", source=self.STATE_CONNECTED, dest=self.STATE_REGISTERED
        )
        self.state_machine.add_transition(trigger="mark_unregistered", source="*", dest=self.STATE_UNSET)

    @property
    def connected(self) -> bool:
        return self._interface is not None

    @property
    def service_name(self) -> str | None:
        return device_service_name(self.device_id) if self.device_id is not None else None

    def _lifecycle_slots(self) -> tuple[OperationSlot[Any], ...]:
        return (
            self._register,
            self._connect,
            self._disconnect,
            self._unregister,
            self._cleanup,
            self._get_tsl,
            self._get_tsl_ext_info,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def setup(self) -> None:
        if self._setup.succeeded and not self._session.is_initialized:
            self._setup.reset()
        try:
            await self._setup.run(self._setup_thing)
        except Exception as exc:
            raise tag_error(exc, ErrorKind.SETUP)

    async def register(self) -> str:
        """Register the thing and return its cloud device id."""
        try:
            return await self._register.run(self._register_thing)
        except Exception as exc:
            raise tag_error(exc, ErrorKind.REGISTER)

    async def connect(self) -> None:
        try:
            await self._connect.run(self._connect_thing)
        except Exception as exc:
            raise tag_error(exc, ErrorKind.CONNECT)

    async def reconnect(self) -> None:
        """Issue a fresh startup for this thing, discarding the memoised connect outcome."""
        if not self._connect.pending:
            self._connect.reset()
        try:
            await self._connect.run(self._reconnect_thing)
        except Exception as exc:
            raise tag_error(exc, ErrorKind.CONNECT)

    async def disconnect(self) -> None:
        try:
            await self._disconnect.run(self._disconnect_thing)
        except Exception as exc:
            raise tag_error(exc, ErrorKind.DISCONNECT)

    async def unregister(self) -> None:
        try:
            await self._unregister.run(self._unregister_thing)
        except Exception as exc:
            raise tag_error(exc, ErrorKind.UNREGISTER)

    async def cleanup(self) -> None:
        try:
            await self._cleanup.run(self._cleanup_thing)
        except Exception as exc:
            raise tag_error(exc, ErrorKind.CLEANUP)

    async def get_tsl(self) -> str:
        try:
            return await self._get_tsl.run(lambda: self._fetch_config(tsl_key(self.info.product_key)))
        except Exception as exc:
            raise tag_error(exc, ErrorKind.GET_TSL)

    async def get_tsl_ext_info(self) -> str:
        try:
            return await self._get_tsl_ext_info.run(
                lambda: self._fetch_config(tsl_ext_info_key(self.info.product_key))
            )
        except Exception as exc:
            raise tag_error(exc, ErrorKind.GET_TSL)

    def signal_event(self, event_name: str, args: Any) -> None:
        payload = EventPayload(params=EventParams(time=now_ms(), values=args))
        self._emit_signal(event_name, encode_json(payload))

    def signal_properties(self, properties: Mapping[str, Any]) -> None:
        timestamp = now_ms()
        wrapped = {key: PropertyValue(value=value, time=timestamp) for key, value in properties.items()}
        self._emit_signal(PROPERTIES_CHANGED_SIGNAL, encode_json(wrapped))

    # ------------------------------------------------------------------
    # Operation bodies
    # ------------------------------------------------------------------

    async def _setup_thing(self) -> None:
        await self._session.initialize()
        # A fresh session invalidates every outcome memoised against the previous one.
        for slot in self._lifecycle_slots():
            slot.reset()
        logger.info("Setup of %s successfully!", self.info.name)

    async def _register_thing(self) -> str:
        tsl = await self.get_tsl()
        registration = DeviceRegistration(
            productKey=self.info.product_key,
            driverName=self._session.module_name,
            deviceProfile=decode_json(tsl),
            productMD5=hashlib.md5(tsl.encode("utf-8"), usedforsecurity=False).hexdigest(),
            isLocal="False",
            deviceName=self.info.device_name or None,
            deviceLocalId=None if self.info.device_name else self.info.local_name,
        )
        payload = encode_json(registration)
        context = {"product_key": self.info.product_key}
        logger.info("Register thing %s/%s to dimu.", self.info.product_key, self.info.name, extra=context)
        logger.debug("registerDevice payload: %s", payload)
        envelope = unwrap_result(await self._session.call_dimu("registerDevice", payload))

        params = envelope.params
        device_id = params.get("deviceCloudId") if isinstance(params, dict) else None
        if not device_id:
            raise ThingAccessError("Returned result is illegal.")
        device_id = str(device_id)

        self.device_id = device_id
        self._session.add_thing(device_id)
        self._unregister.reset()
        self._cleanup.reset()
        self.mark_registered()
        logger.info(
            "Thing %s registered as %s.", self.info.name, device_id, extra={**context, "device_id": device_id}
        )
        return device_id

    async def _connect_thing(self) -> None:
        device_id = self.device_id
        if device_id is None:
            raise PreconditionError("Thing must register first.")
        service_name = device_service_name(device_id)
        await self._session.request_name(service_name)
        try:
            payload = encode_json(DeviceStartup(deviceCloudId=device_id))
            logger.info("Start up thing %s.", payload)
            unwrap_result(await self._session.call_dimu("startupDevice", payload))
            self._export_thing_interface(service_name)
        except Exception:
            try:
                await self._session.release_name(service_name)
            except Exception as release_exc:
                logger.warning("Release of %s during rollback failed: %s", service_name, release_exc)
            raise

        self._session.mark_online(device_id)
        self._disconnect.reset()
        self.mark_connected()
        logger.info("Thing %s is connected to the gateway.", device_id, extra={"device_id": device_id})

    async def _reconnect_thing(self) -> None:
        """Start the device up again on the bus name and interface it already holds."""
        if self._interface is None:
            await self._connect_thing()
            return
        device_id = self.device_id
        if device_id is None:
            raise PreconditionError("Thing must register first.")

        self._session.mark_offline(device_id)
        try:
            payload = encode_json(DeviceStartup(deviceCloudId=device_id))
            logger.info("Restart thing %s.", payload, extra={"device_id": device_id})
            unwrap_result(await self._session.call_dimu("startupDevice", payload))
        except Exception:
            self._drop_connection(device_id)
            service_name = device_service_name(device_id)
            try:
                await self._session.release_name(service_name)
            except Exception as release_exc:
                logger.warning("Release of %s during rollback failed: %s", service_name, release_exc)
            raise
        self._session.mark_online(device_id)
        self._disconnect.reset()
        logger.info("Thing %s is reconnected to the gateway.", device_id, extra={"device_id": device_id})

    def _drop_connection(self, device_id: str) -> None:
        service_name = device_service_name(device_id)
        self._interface = None
        self._session.mark_offline(device_id)
        self._session.unexport_interface(object_path(service_name), service_name)
        self.mark_disconnected()

    async def _disconnect_thing(self) -> None:
        device_id = self.device_id
        if device_id is None:
            raise PreconditionError("Thing has not been registered.")
        if self._interface is None:
            raise PreconditionError("Thing is not connected.")

        exported = self._interface
        self._interface = None
        self._session.mark_offline(device_id)
        try:
            logger.info("Shut down thing %s.", device_id)
            unwrap_result(await self._session.call_dimu("shutdownDevice", device_id))
        except Exception:
            self._interface = exported
            self._session.mark_online(device_id)
            raise

        service_name = device_service_name(device_id)
        self._session.unexport_interface(object_path(service_name), service_name)
        try:
            await self._session.release_name(service_name)
        except Exception as exc:
            logger.warning("Release of %s failed: %s", service_name, exc)
        self._connect.reset()
        self.mark_disconnected()
        logger.info("Thing %s is disconnected from the gateway.", device_id)

    async def _unregister_thing(self) -> None:
        if self.connected:
            logger.warning("Thing %s is still connected; disconnecting before unregister.", self.device_id)
            await self.disconnect()
        device_id = self.device_id
        if device_id is None:
            raise PreconditionError("Thing has not been registered or has been cleaned up.")

        logger.info("Unregister thing %s from dimu.", device_id)
        unwrap_result(await self._session.call_dimu("unregisterDevice", device_id))
        self._session.remove_thing(device_id)
        self.device_id = None
        self._register.reset()
        self._connect.reset()
        self._disconnect.reset()
        self.mark_unregistered()
        logger.info("Unregister thing successfully!")

    async def _cleanup_thing(self) -> None:
        if self.connected:
            logger.warning("Thing %s is still connected; disconnecting before cleanup.", self.device_id)
            await self.disconnect()
        if self.device_id is not None:
            self._session.remove_thing(self.device_id)
            self.device_id = None
        self._setup.reset()
        for slot in self._lifecycle_slots():
            if slot is not self._cleanup:
                slot.reset()
        self.mark_unregistered()

        session = self._session
        if session.config.auto_finalize and not session.things and session.bus is not None:
            logger.info("Last thing cleaned up; finalizing session.")
            await session.finalize()

    async def _fetch_config(self, key: str) -> str:
        logger.info("Get config %s.", key)
        return unwrap_config_value(await self._session.call_config("get_config", key))

    # ------------------------------------------------------------------
    # Bus-facing interface
    # ------------------------------------------------------------------

    def _emit_signal(self, member: str, body: str) -> None:
        if not member:
            raise ValueError("Trying to emit undefined signal.")
        device_id = self.device_id
        if device_id is None:
            raise PreconditionError("You should register before calling this method.")
        service_name = device_service_name(device_id)
        self._session.send_message(
            SignalMessage(
                destination=SUBSCRIBE_DESTINATION,
                path=object_path(service_name),
                interface=service_name,
                member=member,
                signature="s",
                body=(body,),
            )
        )

    def _export_thing_interface(self, service_name: str) -> None:
        descriptor = InterfaceDescriptor(
            name=service_name,
            methods={
                "callServices": MethodSpec("ss", "s", ("service_name", "service_args"), ("result",)),
                "connectResultNotify": MethodSpec("s", "s", ("result",), ("ack",)),
            },
            signals={PROPERTIES_CHANGED_SIGNAL: SignalSpec("s", ("propertiesInfo",))},
        )
        logger.info("Export thing interface %s.", service_name)
        self._session.export_interface(
            {
                "callServices": self.call_services,
                "connectResultNotify": self.connect_result_notify,
            },
            object_path(service_name),
            descriptor,
        )
        self._interface = descriptor

    async def call_services(self, name: str, args: str) -> str:
        """Dispatch an inbound ``callServices`` request to the thing callbacks."""
        logger.info("Call service %s with %s.", name, args)
        try:
            envelope = await self._dispatch_service(name, args)
        except Exception:
            logger.exception("Service %s failed", name)
            self._record_inbound("callServices", False)
            raise
        self._record_inbound("callServices", True)
        return encode_json(envelope)

    async def _dispatch_service(self, name: str, args: str) -> ResultEnvelope:
        try:
            request = decode_json(args)
        except msgspec.DecodeError as exc:
            raise ThingAccessError("Service arguments are not in JSON format.") from exc
        params = request.get("params") if isinstance(request, dict) else None

        if name == SERVICE_GET_PROPERTIES:
            if not isinstance(params, list):
                raise ThingAccessError("Parameters got from the gateway is not an array.")
            result = await _resolve_callback(self.callbacks.get_properties(params))
            if result.code == RESULT_SUCCESS and not isinstance(result.params, dict):
                raise ThingAccessError("Properties result must carry a params object.")
            return ResultEnvelope(code=_envelope_code(result.code), message=result.message, params=result.params)

        if name == SERVICE_SET_PROPERTIES:
            if not isinstance(params, dict):
                raise ThingAccessError("Parameters got from the gateway is not an object.")
            result = await _resolve_callback(self.callbacks.set_properties(params))
            return ResultEnvelope(code=_envelope_code(result.code), message=result.message, params=result.params)

        result = await _resolve_callback(self.callbacks.call_service(name, params))
        return ResultEnvelope(
            code=_envelope_code(result.code),
            message=result.message,
            params=ServiceCallResult(code=result.code, message=result.message, data=result.data),
        )

    def connect_result_notify(self, result: str) -> str:
        """Handle the gateway's asynchronous connect outcome; reconnect when asked to."""
        ack = encode_json(ResultEnvelope(code=RESULT_SUCCESS, message="success"))
        try:
            document = decode_json(result)
        except msgspec.DecodeError:
            logger.warning("Connect result is not in JSON format: %s", result)
            return ack
        params = document.get("params") if isinstance(document, dict) else None
        if not isinstance(params, dict):
            logger.warning("Connect result carries no params: %s", result)
            return ack
        try:
            notice = msgspec.convert(params, ConnectNotice, strict=False)
        except msgspec.ValidationError as exc:
            logger.warning("Connect result is malformed: %s", exc)
            return ack

        if notice.code in self._session.config.reconnect_codes:
            logger.info("Gateway reported code %s for %s; reconnecting.", notice.code, self.device_id)
            task = asyncio.ensure_future(self.reconnect())
            self._background.add(task)
            task.add_done_callback(self._on_reconnect_done)
        return ack

    def _on_reconnect_done(self, task: asyncio.Future[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Reconnect of %s failed: %s", self.device_id, exc)

    def _record_inbound(self, member: str, ok: bool) -> None:
        metrics = self._session.metrics
        if metrics is not None:
            metrics.record_inbound(member, ok)


__all__ = ["REQUIRED_CALLBACKS", "ThingAccess", "ThingCallbacks", "validate_callbacks"]
