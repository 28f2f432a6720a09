"""Session, driver config and per-thing services."""

from .base import EventEmitter, OperationSlot
from .driver_config import DriverConfigManager
from .session import Session
from .thing_access import ThingAccess, ThingCallbacks

__all__ = [
    "DriverConfigManager",
    "EventEmitter",
    "OperationSlot",
    "Session",
    "ThingAccess",
    "ThingCallbacks",
]
