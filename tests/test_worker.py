"""Unit tests for service_common.worker.BackgroundWorker."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from aiohttp import web

from service_common.worker import BackgroundWorker, WorkerTask


@pytest.mark.asyncio
async def test_run_once_passes_sweep_time_to_every_task():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    first = AsyncMock(return_value="deleted=1")
    second = AsyncMock(return_value=None)
    worker = BackgroundWorker(
        tasks=[WorkerTask(name="first", fn=first), WorkerTask(name="second", fn=second)],
    )

    await worker.run_once(now)

    first.assert_awaited_once_with(now)
    second.assert_awaited_once_with(now)


@pytest.mark.asyncio
async def test_run_once_defaults_to_aware_utc_now():
    fn = AsyncMock(return_value=None)
    worker = BackgroundWorker(tasks=[WorkerTask(name="t", fn=fn)])

    await worker.run_once()

    (now,), _ = fn.call_args
    assert now.tzinfo is not None


@pytest.mark.asyncio
async def test_failing_task_does_not_skip_the_rest():
    bad = AsyncMock(side_effect=RuntimeError("boom"))
    good = AsyncMock(return_value=None)
    worker = BackgroundWorker(
        tasks=[WorkerTask(name="bad", fn=bad), WorkerTask(name="good", fn=good)],
    )

    await worker.run_once()

    good.assert_awaited_once()


@pytest.mark.asyncio
async def test_loop_sweeps_repeatedly_until_stopped():
    sweeps: list[datetime] = []

    async def record(now: datetime) -> str | None:
        sweeps.append(now)
        return None

    worker = BackgroundWorker(interval_seconds=0.05, tasks=[WorkerTask(name="record", fn=record)])
    app = web.Application()
    await worker.start(app)
    await asyncio.sleep(0.2)
    await worker.stop(app)

    assert len(sweeps) >= 2
    count_at_stop = len(sweeps)
    await asyncio.sleep(0.1)
    assert len(sweeps) == count_at_stop


@pytest.mark.asyncio
async def test_stop_without_start():
    worker = BackgroundWorker(interval_seconds=1.0, tasks=[])
    await worker.stop(web.Application())
