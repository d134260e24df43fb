"""Exceptions raised by the state propagation core."""


class MatrixCIError(Exception):
    """Base class for all matrixci errors."""


class ValidationError(MatrixCIError, ValueError):
    """A payload or request is malformed. Never retried."""


class JobNotFoundError(ValidationError):
    """The event references a job that does not exist."""

    def __init__(self, job_id: int):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidTransitionError(ValidationError):
    """The requested state change is not allowed from the job's state."""


class ConflictError(MatrixCIError):
    """A unique constraint could not be satisfied, even after re-reading."""


class StaleEventError(MatrixCIError):
    """The event is older than the state already applied. Dropped as a no-op."""


class PersistenceError(MatrixCIError):
    """The store failed; nothing of the unit of work was committed."""
