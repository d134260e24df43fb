"""Pydantic models for job lifecycle events reported by workers."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from ..models import BuildState
from ..utils.time import as_utc


class JobEventKind(str, Enum):
    """Job lifecycle events a worker (or an operator) can report."""

    START = "start"
    FINISH = "finish"
    RESET = "reset"
    CANCEL = "cancel"


class JobEventPayload(BaseModel):
    """
    Normalized worker payload.

    Older workers report ``result`` (0 = passed, anything else = failed)
    instead of ``state``; the result is swapped for a state during
    validation so handlers only ever see ``state``.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: int
    state: BuildState | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    worker: str | None = None

    @model_validator(mode="before")
    @classmethod
    def swap_result_for_state(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        result = data.pop("result", None)
        if data.get("state") is None and result is not None:
            data["state"] = BuildState.PASSED if int(result) == 0 else BuildState.FAILED
        return data

    @field_validator("started_at", "finished_at")
    @classmethod
    def to_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)
