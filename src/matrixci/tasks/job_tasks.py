"""Job event and enqueue task definitions for Procrastinate."""

import logging
from typing import Any

from procrastinate.exceptions import AlreadyEnqueued

from ..config import settings
from ..errors import ValidationError
from ..schemas.worker_events import JobEventKind
from ..services.enqueue_jobs import JobEnqueuer
from ..services.update_job import JobUpdater
from .dispatch import ProcrastinateNotifier, ProcrastinatePublisher
from .worker import ENQUEUE_QUEUE, EVENTS_QUEUE, RETRY_ON_STORE_ERRORS, app

logger = logging.getLogger(__name__)


@app.task(name="update_job", queue=EVENTS_QUEUE, retry=RETRY_ON_STORE_ERRORS)
async def update_job(event: str, payload: dict[str, Any]) -> None:
    """Apply a worker's job event and cascade it to the build and repository."""
    updater = JobUpdater(notifier=ProcrastinateNotifier())
    try:
        result = await updater.apply_event(event, payload)
    except ValidationError as e:
        logger.warning("Rejected %s event %s: %s", event, payload, e)
        return

    # A finished job can unblock the next stage of its build
    if result.applied and result.event != JobEventKind.START:
        await request_enqueue()


async def request_enqueue() -> None:
    """Defer an enqueue round unless one is already waiting."""
    try:
        await enqueue_jobs.configure(queueing_lock="enqueue_jobs").defer_async()
    except AlreadyEnqueued:
        logger.debug("Enqueue round already pending")


@app.periodic(cron=settings.enqueue_cron)
@app.task(name="enqueue_jobs", queue=ENQUEUE_QUEUE, retry=RETRY_ON_STORE_ERRORS)
async def enqueue_jobs(timestamp: int | None = None) -> None:
    """Dispatch every job that may run now."""
    messages = await JobEnqueuer(ProcrastinatePublisher()).run()
    logger.info("Enqueue round dispatched %d jobs", len(messages))
