"""Edge bus transport: channel contract and the dbus-fast implementation."""

from .channel import BusChannel, CallResult, ChannelFactory, InterfaceDescriptor, MethodSpec, SignalMessage, SignalSpec

__all__ = [
    "BusChannel",
    "CallResult",
    "ChannelFactory",
    "InterfaceDescriptor",
    "MethodSpec",
    "SignalMessage",
    "SignalSpec",
]
