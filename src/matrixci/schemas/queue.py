"""Messages pushed onto the work queue for remote workers."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class CommitInfo(BaseModel):
    """Commit the job has to check out."""

    sha: str
    branch: str
    message: str | None = None
    compare_url: str | None = None


class JobMessage(BaseModel):
    """Everything a worker needs to run one job."""

    type: str = "test"
    job_id: int
    build_id: int
    number: str
    queue: str
    repository_id: int
    repository_slug: str
    source_url: str
    commit: CommitInfo | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    queued_at: datetime
