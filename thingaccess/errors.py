"""Exception types raised by the thing-access runtime."""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Operation that produced a :class:`ThingAccessError`."""

    SETUP = "setup"
    CLEANUP = "cleanup"
    REGISTER = "register"
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    GET_TSL = "get_tsl"
    GET_CONFIG = "get_config"
    UNREGISTER = "unregister"
    REGISTER_MODULE = "register_module"
    FINALIZE = "finalize"


class ThingAccessError(RuntimeError):
    """Protocol or lifecycle failure, optionally tagged with the failing operation."""

    def __init__(self, message: str, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.origin: ErrorKind | None = None

    def tagged(self, kind: ErrorKind) -> ThingAccessError:
        """Tag with the public operation *kind*, keeping the first inner tag as ``origin``."""
        if self.kind is not None and self.kind != kind and self.origin is None:
            self.origin = self.kind
        self.kind = kind
        return self


class PreconditionError(ThingAccessError):
    """Operation called in a state that does not allow it; no RPC was issued."""


def tag_error(exc: BaseException, kind: ErrorKind) -> ThingAccessError:
    """Return *exc* as a ThingAccessError tagged with *kind*."""
    if isinstance(exc, ThingAccessError):
        return exc.tagged(kind)
    wrapped = ThingAccessError(str(exc) or exc.__class__.__name__, kind)
    wrapped.__cause__ = exc
    return wrapped


__all__ = ["ErrorKind", "ThingAccessError", "PreconditionError", "tag_error"]
