"""Background workers for webhook-service.

Each worker module exports one async task function compatible with
:class:`service_common.worker.WorkerTask`; :data:`worker` runs them on
``worker_interval_seconds``.
"""
from __future__ import annotations

from service_common.worker import BackgroundWorker, WorkerTask

from webhook_service.settings import settings
from webhook_service.workers.webhook_retention import webhook_retention_sweep

worker = BackgroundWorker(
    interval_seconds=settings.worker_interval_seconds,
    tasks=[
        WorkerTask(name="webhook_retention_sweep", fn=webhook_retention_sweep),
    ],
)

start_background_worker = worker.start
stop_background_worker = worker.stop

__all__ = [
    "worker",
    "start_background_worker",
    "stop_background_worker",
]
