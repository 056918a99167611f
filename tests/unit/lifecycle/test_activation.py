"""Unit tests for the post-bind activation hook."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from streamhooks.lifecycle.activation import ActivationHook


def make_manager(calls, init_error=None):
    manager = MagicMock()

    async def init():
        calls.append("init")
        if init_error:
            raise init_error

    manager.init = AsyncMock(side_effect=init)
    return manager


@pytest.mark.asyncio
class TestActivationHook:
    async def test_runs_init_then_seed(self):
        calls = []
        manager = make_manager(calls)

        async def seed(m):
            assert m is manager
            calls.append("seed")

        hook = ActivationHook(manager, seed)
        assert hook.schedule() is True
        await hook.task

        assert calls == ["init", "seed"]

    async def test_runs_at_most_once(self):
        calls = []
        seed = AsyncMock()
        hook = ActivationHook(make_manager(calls), seed)

        assert hook.schedule() is True
        first_task = hook.task
        assert hook.schedule() is False
        assert hook.task is first_task
        await first_task

        assert calls == ["init"]
        seed.assert_awaited_once()

    async def test_init_failure_skips_seed_and_is_swallowed(self):
        calls = []
        seed = AsyncMock()
        hook = ActivationHook(make_manager(calls, init_error=RuntimeError("hub down")), seed)

        hook.schedule()
        await hook.task

        assert hook.task.exception() is None
        seed.assert_not_awaited()

    async def test_seed_failure_is_swallowed(self):
        seed = AsyncMock(side_effect=RuntimeError("helix down"))
        hook = ActivationHook(make_manager([]), seed)

        hook.schedule()
        await hook.task

        assert hook.task.exception() is None
        seed.assert_awaited_once()

    async def test_cancel_running_activation(self):
        started = asyncio.Event()

        async def slow_seed(manager):
            started.set()
            await asyncio.sleep(10)

        hook = ActivationHook(make_manager([]), slow_seed)
        hook.schedule()
        await started.wait()

        await hook.cancel()

        assert hook.task.cancelled()

    async def test_cancel_before_schedule_is_noop(self):
        hook = ActivationHook(make_manager([]), AsyncMock())
        await hook.cancel()
        assert hook.task is None
