"""State change notifications emitted after a job event is committed."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from ..models import Build, Job

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    """A named event with a JSON-serializable payload."""

    event: str  # e.g. "job:test:started", "build:finished"
    payload: dict[str, Any]


class Notifier(Protocol):
    async def notify(self, notifications: Sequence[Notification]) -> None: ...


class LoggingNotifier:
    """Notifier that only logs; used when nobody delivers events."""

    async def notify(self, notifications: Sequence[Notification]) -> None:
        for notification in notifications:
            logger.info("Event %s: %s", notification.event, notification.payload)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def job_payload(job: Job) -> dict[str, Any]:
    return {
        "id": job.id,
        "build_id": job.build_id,
        "repository_id": job.repository_id,
        "number": job.number,
        "state": job.state.value,
        "worker": job.worker,
        "started_at": _isoformat(job.started_at),
        "finished_at": _isoformat(job.finished_at),
    }


def build_payload(build: Build) -> dict[str, Any]:
    return {
        "id": build.id,
        "repository_id": build.repository_id,
        "number": build.number,
        "state": build.state.value,
        "started_at": _isoformat(build.started_at),
        "finished_at": _isoformat(build.finished_at),
        "duration": build.duration,
    }
