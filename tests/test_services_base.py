"""Tests for the memo slot and event emitter primitives."""

from __future__ import annotations

import asyncio
import logging

import pytest

from thingaccess.services.base import EventEmitter, OperationSlot


@pytest.mark.asyncio
async def test_slot_shares_inflight_and_settled_result() -> None:
    slot: OperationSlot[int] = OperationSlot("demo")
    calls = 0
    gate = asyncio.Event()

    async def work() -> int:
        nonlocal calls
        calls += 1
        await gate.wait()
        return 42

    first = asyncio.create_task(slot.run(work))
    second = asyncio.create_task(slot.run(work))
    await asyncio.sleep(0)
    assert slot.pending
    gate.set()

    assert await asyncio.gather(first, second) == [42, 42]
    assert await slot.run(work) == 42
    assert calls == 1
    assert slot.succeeded


@pytest.mark.asyncio
async def test_slot_clears_after_failure() -> None:
    slot: OperationSlot[str] = OperationSlot("demo")
    attempts: list[int] = []

    async def flaky() -> str:
        attempts.append(len(attempts))
        if len(attempts) == 1:
            raise OSError("first attempt")
        return "done"

    with pytest.raises(OSError):
        await slot.run(flaky)
    assert not slot.pending
    assert not slot.succeeded

    assert await slot.run(flaky) == "done"
    assert attempts == [0, 1]


@pytest.mark.asyncio
async def test_concurrent_callers_share_the_failure() -> None:
    slot: OperationSlot[None] = OperationSlot("demo")
    calls = 0

    async def broken() -> None:
        nonlocal calls
        calls += 1
        await asyncio.sleep(0)
        raise ValueError("nope")

    results = await asyncio.gather(slot.run(broken), slot.run(broken), return_exceptions=True)

    assert calls == 1
    assert all(isinstance(result, ValueError) for result in results)


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_operation() -> None:
    slot: OperationSlot[str] = OperationSlot("demo")
    gate = asyncio.Event()

    async def work() -> str:
        await gate.wait()
        return "value"

    waiter = asyncio.create_task(slot.run(work))
    await asyncio.sleep(0)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    assert slot.pending
    gate.set()
    assert await slot.run(work) == "value"


@pytest.mark.asyncio
async def test_reset_forces_fresh_attempt() -> None:
    slot: OperationSlot[int] = OperationSlot("demo")
    counter = iter(range(10))

    async def work() -> int:
        return next(counter)

    assert await slot.run(work) == 0
    slot.reset()
    assert await slot.run(work) == 1


def test_emitter_registration() -> None:
    emitter = EventEmitter()
    received: list[tuple[int, int]] = []

    def listener(a: int, b: int) -> None:
        received.append((a, b))

    assert not emitter.emit("sum", 1, 2)
    emitter.on("sum", listener)
    assert emitter.has_listener("sum", listener)
    assert emitter.listener_count("sum") == 1
    assert emitter.emit("sum", 1, 2)

    emitter.off("sum", listener)
    emitter.off("sum", listener)
    assert not emitter.has_listener("sum", listener)
    emitter.emit("sum", 3, 4)
    assert received == [(1, 2)]


def test_emitter_logs_listener_failure(caplog: pytest.LogCaptureFixture) -> None:
    emitter = EventEmitter()
    received: list[str] = []

    def broken(value: str) -> None:
        raise RuntimeError("listener broke")

    emitter.on("changes", broken)
    emitter.on("changes", received.append)

    with caplog.at_level(logging.ERROR, logger="thingaccess.services"):
        emitter.emit("changes", "x")

    assert received == ["x"]
    assert "listener broke" in caplog.text


@pytest.mark.asyncio
async def test_emitter_schedules_coroutine_listeners(caplog: pytest.LogCaptureFixture) -> None:
    emitter = EventEmitter()
    done = asyncio.Event()

    async def good(value: str) -> None:
        done.set()

    async def bad(value: str) -> None:
        raise RuntimeError("async broke")

    emitter.on("changes", good)
    emitter.on("changes", bad)

    with caplog.at_level(logging.ERROR, logger="thingaccess.services"):
        emitter.emit("changes", "x")
        await asyncio.wait_for(done.wait(), timeout=1)
        for _ in range(5):
            await asyncio.sleep(0)

    assert "async broke" in caplog.text


def test_emitter_clear() -> None:
    emitter = EventEmitter()
    emitter.on("a", print)
    emitter.clear()
    assert emitter.listener_count("a") == 0
