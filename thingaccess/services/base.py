"""Shared primitives for the session and device services."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger("thingaccess.services")


class OperationSlot(Generic[T]):
    """Single-slot memo for an asynchronous operation.

    While an operation is in flight, or after it succeeded, every caller of
    :meth:`run` shares its outcome. A failed or cancelled run empties the slot
    so the next caller starts a fresh attempt. Owners call :meth:`reset` when
    a later operation invalidates the memoised result.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._future: asyncio.Future[T] | None = None

    @property
    def pending(self) -> bool:
        return self._future is not None and not self._future.done()

    @property
    def succeeded(self) -> bool:
        future = self._future
        return future is not None and future.done() and not future.cancelled() and future.exception() is None

    def reset(self) -> None:
        self._future = None

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        future = self._future
        if future is None:
            future = asyncio.ensure_future(factory())
            future.add_done_callback(self._on_done)
            self._future = future
        return await asyncio.shield(future)

    def _on_done(self, future: asyncio.Future[T]) -> None:
        if future.cancelled() or future.exception() is not None:
            if self._future is future:
                self._future = None


Listener = Callable[..., Any]


class EventEmitter:
    """Minimal named-event registry for in-process notifications."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return
        try:
            listeners.remove(listener)
        except ValueError:
            return
        if not listeners:
            del self._listeners[event]

    def has_listener(self, event: str, listener: Listener) -> bool:
        return listener in self._listeners.get(event, ())

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def clear(self) -> None:
        self._listeners.clear()

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener of *event*; listener failures are logged, not raised."""
        listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    asyncio.ensure_future(result).add_done_callback(_log_listener_failure)
            except Exception:
                logger.exception("Listener for '%s' failed", event)
        return bool(listeners)


def _log_listener_failure(future: asyncio.Future[Any]) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Async listener failed: %s", exc)


__all__ = ["EventEmitter", "OperationSlot"]
