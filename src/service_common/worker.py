"""Periodic in-process background worker for aiohttp services.

Usage::

    from service_common.worker import BackgroundWorker, WorkerTask

    async def purge_old_rows(now: datetime) -> str | None:
        deleted = await repo.delete_created_before(now - timedelta(days=7))
        return f"deleted={deleted}" if deleted else None

    worker = BackgroundWorker(
        interval_seconds=3600.0,
        tasks=[WorkerTask(name="purge_old_rows", fn=purge_old_rows)],
    )

    app.on_startup.append(worker.start)
    app.on_cleanup.append(worker.stop)
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

import structlog
from aiohttp import web

logger = structlog.get_logger(__name__)

# A task receives the sweep time (UTC) and may return a short summary,
# which is logged when non-empty.
TaskFn = Callable[[datetime], Awaitable[str | None]]


@dataclass
class WorkerTask:
    """A named periodic task executed by :class:`BackgroundWorker`."""

    name: str
    fn: TaskFn


_WORKER_TASK_KEY = "__background_worker_task__"


@dataclass
class BackgroundWorker:
    """Runs a list of tasks sequentially, once per interval.

    Sweeps never overlap: the next sleep starts only after every task of the
    current sweep has returned. A failing task is logged and the remaining
    tasks still run.
    """

    interval_seconds: float = 3600.0
    tasks: Sequence[WorkerTask] = field(default_factory=list)

    async def start(self, app: web.Application) -> None:
        """Spawn the worker loop. Register with ``app.on_startup``."""
        app[_WORKER_TASK_KEY] = asyncio.create_task(self._loop())

    async def stop(self, app: web.Application) -> None:
        """Cancel the worker loop. Register with ``app.on_cleanup``."""
        task = app.get(_WORKER_TASK_KEY)
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def run_once(self, now: datetime | None = None) -> None:
        """Execute every task once, isolating failures."""
        now = now or datetime.now(timezone.utc)
        for task in self.tasks:
            try:
                summary = await task.fn(now)
            except Exception:
                logger.exception("background_task failed", task=task.name)
                continue
            if summary:
                logger.info("background_task completed", task=task.name, summary=summary)

    async def _loop(self) -> None:
        logger.info(
            "background_worker started",
            interval_seconds=self.interval_seconds,
            tasks=[t.name for t in self.tasks],
        )
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.run_once()
            except asyncio.CancelledError:
                logger.info("background_worker stopped")
                raise
            except Exception:
                logger.exception("background_worker sweep failed")
