"""Error taxonomy for the re-dubbing pipeline."""


class RedubError(Exception):
    """Base class for errors raised by redub."""


class TransientBackendError(RedubError):
    """A backend call timed out, exited non-zero or produced unusable output.

    Always retried a bounded number of times, then degraded by the caller.
    """


class StructuralError(RedubError):
    """The input cannot be processed at all (no segments, no target, no backend).

    Aborts the current video only.
    """


class BudgetExceeded(RedubError):
    """A stage or video ran past its wall-clock budget."""
