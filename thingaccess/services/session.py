"""Process-wide edge bus session.

One :class:`Session` exists per driver process. It owns the bus connection,
the module-level service name and driver registration, and the bookkeeping
of which things are registered and online. Device services share it.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from transitions import Machine

from ..common import now_ms
from ..config.settings import RuntimeConfig
from ..const import (
    CONFIG_SERVICE_NAME,
    DIMU_SERVICE_NAME,
    NAME_FLAG_DO_NOT_QUEUE,
    NAME_REPLY_EXISTS,
    NAME_REPLY_PRIMARY_OWNER,
)
from ..errors import ErrorKind, PreconditionError, ThingAccessError, tag_error
from ..metrics import BusMetrics
from ..protocol.envelopes import (
    DeviceList,
    DriverRegistration,
    DriverRequest,
    DriverUnregistration,
    ResultEnvelope,
    encode_json,
    unwrap_result,
)
from ..protocol.names import module_service_name, object_path, parse_selector
from ..transport.channel import (
    BusChannel,
    CallResult,
    Handler,
    InterfaceDescriptor,
    MethodSpec,
    RemoteInterface,
    SignalMessage,
)
from .base import EventEmitter, OperationSlot

logger = logging.getLogger("thingaccess.session")

NOT_SETUP_MESSAGE = "Client has not been setup or has been cleanup."
NOTIFY_CONFIG_EVENT = "notify_config"

SELECTOR_ONLINE = "online"
SELECTOR_OFFLINE = "offline"


class Session:
    """Shared bus session with memoised initialize/finalize."""

    STATE_CLOSED = "closed"
    STATE_INITIALIZING = "initializing"
    STATE_READY = "ready"
    STATE_FINALIZING = "finalizing"

    def __init__(
        self,
        config: RuntimeConfig,
        channel: BusChannel,
        *,
        metrics: BusMetrics | None = None,
    ) -> None:
        self.config = config
        self.module_name = config.module_name
        self.service_name = module_service_name(config.module_name)
        self.object_path = object_path(self.service_name)
        self.metrics = metrics
        self.events = EventEmitter()
        self._channel = channel
        self._channel.add_error_listener(self._on_bus_error)
        self._initializing: OperationSlot[None] = OperationSlot("initialize")
        self._finalizing: OperationSlot[None] = OperationSlot("finalize")

        self.bus: BusChannel | None = None
        self.dimu: RemoteInterface | None = None
        self.config_manager: RemoteInterface | None = None
        self.things: set[str] = set()
        self.connected_things: set[str] = set()

        self.state_machine = Machine(
            model=self,
            states=[
                self.STATE_CLOSED,
                self.STATE_INITIALIZING,
                self.STATE_READY,
                self.STATE_FINALIZING,
            ],
            initial=self.STATE_CLOSED,
            ignore_invalid_triggers=True,
            model_attribute="fsm_state",
        )
        self.state_machine.add_transition(
            trigger="begin_initialize", source=self.STATE_CLOSED, dest=self.STATE_INITIALIZING
        )
        self.state_machine.add_transition(
            trigger="complete_initialize", source=self.STATE_INITIALIZING, dest=self.STATE_READY
        )
        self.state_machine.add_transition(trigger="begin_finalize", source="*", dest=self.STATE_FINALIZING)
        self.state_machine.add_transition(trigger="mark_closed", source="*", dest=self.STATE_CLOSED)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self.bus is not None and self.fsm_state == self.STATE_READY

    async def initialize(self) -> None:
        """Connect, claim the module name and register the driver (once)."""
        await self._initializing.run(self._initialize)

    async def finalize(self) -> None:
        """Unregister the driver, release the module name and reset all state."""
        await self._finalizing.run(self._finalize)

    async def _initialize(self) -> None:
        self.begin_initialize()
        name_acquired = False
        try:
            logger.info("Initialize edge bus...")
            await self._channel.connect()
            self.bus = self._channel
            self.dimu = await self._channel.get_interface(DIMU_SERVICE_NAME)
            self.config_manager = await self._channel.get_interface(CONFIG_SERVICE_NAME)
            await self.request_name(self.service_name)
            name_acquired = True
            self._export_module_interface()
            await self._register_module()
        except Exception:
            if name_acquired:
                try:
                    await self.release_name(self.service_name)
                except Exception as release_exc:
                    logger.warning("Release of %s during rollback failed: %s", self.service_name, release_exc)
            self._teardown()
            raise

        self._finalizing.reset()
        self.complete_initialize()
        logger.info("Initialize successfully!")

    async def _finalize(self) -> None:
        logger.info("Finalize...")
        self.begin_finalize()
        error: ThingAccessError | None = None
        try:
            await self._unregister_module()
        except Exception as exc:
            logger.error("Unregister driver %s failed: %s", self.module_name, exc)
            error = tag_error(exc, ErrorKind.FINALIZE)
        try:
            await self.release_name(self.service_name)
        except Exception as exc:
            logger.warning("Release of %s failed: %s", self.service_name, exc)
            if error is None:
                error = tag_error(exc, ErrorKind.FINALIZE)
        finally:
            self._teardown()

        if error is not None:
            raise error
        logger.info("Finalize successfully!")

    def _teardown(self) -> None:
        self.things.clear()
        self.connected_things.clear()
        self.dimu = None
        self.config_manager = None
        self.events.clear()
        if self.bus is not None:
            self.bus.unexport_interface(self.object_path, self.service_name)
            self.bus.close()
            self.bus = None
        self._initializing.reset()
        self.update_population()
        self.mark_closed()

    def _on_bus_error(self, exc: BaseException) -> None:
        logger.error("Edge bus connection had an error: %s", exc)

    # ------------------------------------------------------------------
    # Bus pass-through
    # ------------------------------------------------------------------

    def _require_bus(self) -> BusChannel:
        if self.bus is None:
            raise PreconditionError(NOT_SETUP_MESSAGE)
        return self.bus

    async def request_name(self, name: str) -> None:
        bus = self._require_bus()
        logger.info("Request service name %s.", name)
        try:
            reply = await bus.request_name(name, NAME_FLAG_DO_NOT_QUEUE)
        except Exception as exc:
            raise ThingAccessError(f"Could not request service name {name}, the error is {exc}.") from exc
        if reply == NAME_REPLY_PRIMARY_OWNER:
            logger.debug("Acquired service name %s.", name)
            return
        if reply == NAME_REPLY_EXISTS:
            raise ThingAccessError(f"Service name {name} is already owned by another connection.")
        raise ThingAccessError(f"Failed to request service name {name}, the errno is {reply}.")

    async def release_name(self, name: str) -> None:
        bus = self._require_bus()
        logger.info("Release service name %s.", name)
        await bus.release_name(name)

    def export_interface(
        self,
        handlers: Mapping[str, Handler],
        path: str,
        descriptor: InterfaceDescriptor,
    ) -> None:
        self._require_bus().export_interface(handlers, path, descriptor)

    def unexport_interface(self, path: str, interface_name: str) -> None:
        if self.bus is not None:
            self.bus.unexport_interface(path, interface_name)

    def send_message(self, message: SignalMessage) -> None:
        self._require_bus().send_message(message)
        if self.metrics is not None:
            self.metrics.record_signal(message.member)

    async def call_dimu(self, member: str, *args: object) -> CallResult:
        if self.dimu is None:
            raise PreconditionError("Client has not been setup or setup failed.")
        return await self._call(self.dimu, member, *args)

    async def call_config(self, member: str, *args: object) -> CallResult:
        if self.config_manager is None:
            raise PreconditionError("Client has not been setup or setup failed.")
        return await self._call(self.config_manager, member, *args)

    async def _call(self, iface: RemoteInterface, member: str, *args: object) -> CallResult:
        result = await iface.call(member, *args)
        if self.metrics is not None:
            self.metrics.record_call(member, result.ok)
        if not result.ok:
            logger.debug("%s.%s failed: %s", iface.name, member, result.error)
        return result

    # ------------------------------------------------------------------
    # Device bookkeeping
    # ------------------------------------------------------------------

    def add_thing(self, device_id: str) -> None:
        self.things.add(device_id)
        self.update_population()

    def remove_thing(self, device_id: str) -> None:
        self.things.discard(device_id)
        self.connected_things.discard(device_id)
        self.update_population()

    def mark_online(self, device_id: str) -> None:
        self.connected_things.add(device_id)
        self.update_population()

    def mark_offline(self, device_id: str) -> None:
        self.connected_things.discard(device_id)
        self.update_population()

    def update_population(self) -> None:
        if self.metrics is not None:
            self.metrics.set_population(len(self.things), len(self.connected_things))

    def device_list(self, selector: str | None = None) -> list[str]:
        _, state = parse_selector(selector)
        if state == SELECTOR_ONLINE:
            devices = set(self.connected_things)
        elif state == SELECTOR_OFFLINE:
            devices = self.things - self.connected_things
        else:
            devices = set(self.things)
        return sorted(devices)

    # ------------------------------------------------------------------
    # Module interface
    # ------------------------------------------------------------------

    def _export_module_interface(self) -> None:
        logger.info("Export module interface %s.", self.service_name)
        descriptor = InterfaceDescriptor(
            name=self.service_name,
            methods={
                "getDeviceList": MethodSpec("s", "s", ("selector",), ("result",)),
                "notify_config": MethodSpec("ss", "i", ("key", "value"), ("result",)),
            },
        )
        self.export_interface(
            {
                "getDeviceList": self.get_device_list,
                "notify_config": self.notify_config,
            },
            self.object_path,
            descriptor,
        )

    def get_device_list(self, selector: str = "") -> str:
        devices = self.device_list(selector)
        envelope = ResultEnvelope(
            code=0,
            message="success",
            params=DeviceList(devNum=len(devices), devList=devices),
        )
        return encode_json(envelope)

    def notify_config(self, key: str, value: str) -> int:
        logger.debug("Config notification for %s.", key)
        self.events.emit(NOTIFY_CONFIG_EVENT, key, value)
        return 0

    async def _register_module(self) -> None:
        payload = encode_json(
            DriverRequest(
                params=DriverRegistration(
                    driverLocalId=self.module_name,
                    driverStartupTime=str(now_ms()),
                )
            )
        )
        logger.info("Register module to dimu %s.", payload)
        try:
            unwrap_result(await self.call_dimu("registerDriver", payload))
        except Exception as exc:
            raise tag_error(exc, ErrorKind.REGISTER_MODULE)

    async def _unregister_module(self) -> None:
        payload = encode_json(DriverRequest(params=DriverUnregistration(driverLocalId=self.module_name)))
        logger.info("Unregister module from dimu %s.", payload)
        unwrap_result(await self.call_dimu("unregisterDriver", payload))


__all__ = ["NOTIFY_CONFIG_EVENT", "Session"]
