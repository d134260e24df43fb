"""matrixci - build/job state propagation and job enqueueing for CI."""

__version__ = "0.1.0"
