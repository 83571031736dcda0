"""Exceptions raised by the sync and refresh passes."""


class FetchError(Exception):
    """Raised when the remote event feed is unreachable or malformed."""
    pass


class QuotaExceeded(Exception):
    """Raised when a daily external query budget would be exceeded."""

    def __init__(self, query_type: str, used: int = 0, needed: int = 0,
                 limit: int = 0, message: str = None):
        self.query_type = query_type
        self.used = used
        self.needed = needed
        self.limit = limit
        if message is None:
            message = (
                f"Daily {query_type} query quota exceeded: "
                f"{used} + {needed} > {limit}"
            )
        super().__init__(message)


class SyncAlreadyRunning(Exception):
    """Raised when another sync run holds the run lease."""
    pass
