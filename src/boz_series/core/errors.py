"""Error types raised by the continuity engine."""


class BozSeriesError(Exception):
    """Base class for boz-series errors."""


class StatePersistenceError(BozSeriesError):
    """Raised when the series state container cannot be written.

    The in-memory state is left untouched so the disc can be retried.
    """

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to persist state to {path}: {reason}")
