"""
Domain exceptions for the arena statistics engine.
"""


class ArenaStatsError(Exception):
    """Base exception for statistics engine errors."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(message)


class ConfigurationError(ArenaStatsError):
    """Missing access key, invalid delay or other bad configuration."""

    pass


class NetworkError(ArenaStatsError):
    """Non-success status, timeout or transport failure."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int | None = None,
        attempts: int = 1,
    ) -> None:
        super().__init__(code, message)
        self.status_code = status_code
        self.attempts = attempts


class DataError(ArenaStatsError):
    """Malformed or missing fields in a host event or server payload."""

    pass


class SchedulerError(ArenaStatsError):
    """Failure of the background polling mechanism itself."""

    pass
