"""Tests for the per-document stream registry and abort signal."""

from __future__ import annotations

import asyncio

import pytest

from inkchat.chat.registry import StreamRegistry
from inkchat.llm.cancellation import AbortSignal
from inkchat.llm.errors import StreamCancelled


def test_register_and_release() -> None:
    registry = StreamRegistry()
    signal = AbortSignal()

    registry.register("doc", signal)

    assert registry.is_streaming("doc")
    assert len(registry) == 1
    with pytest.raises(RuntimeError):
        registry.register("doc", AbortSignal())

    registry.release("doc", signal)

    assert not registry.is_streaming("doc")
    assert len(registry) == 0


def test_cancel_frees_the_slot_immediately() -> None:
    registry = StreamRegistry()
    stale = AbortSignal()
    registry.register("doc", stale)

    assert registry.cancel("doc", reason="user") is True
    assert stale.aborted and stale.reason == "user"
    assert registry.cancel("doc") is False

    fresh = AbortSignal()
    registry.register("doc", fresh)
    registry.release("doc", stale)

    assert registry.is_streaming("doc")
    assert not fresh.aborted


def test_signal_raise_if_aborted() -> None:
    signal = AbortSignal()
    signal.raise_if_aborted()

    signal.abort()
    signal.abort("ignored")

    assert signal.reason == "cancelled"
    with pytest.raises(StreamCancelled) as excinfo:
        signal.raise_if_aborted()
    assert excinfo.value.message == "Stopped"
    assert excinfo.value.severity == "info"


@pytest.mark.asyncio
async def test_abort_cancels_bound_tasks() -> None:
    signal = AbortSignal()
    task = asyncio.create_task(asyncio.sleep(60))
    signal.bind(task)

    signal.abort()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert signal.aborted

    late = asyncio.create_task(asyncio.sleep(60))
    signal.bind(late)
    with pytest.raises(asyncio.CancelledError):
        await late
