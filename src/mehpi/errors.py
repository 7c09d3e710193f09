"""
mehpi Errors

Exception hierarchy for the mock API server.

Registration errors are raised synchronously so test setup fails fast.
Transport errors are delivered through the futures returned by
MockServer.start() and MockServer.stop().
"""

from typing import Optional


class MehpiError(Exception):
    """Base class for all mehpi errors."""


class InvalidRouteKeyError(MehpiError, TypeError):
    """Route key is neither a string path nor a compiled regular expression."""

    def __init__(self, value):
        self.value = value
        super().__init__(
            f"Only regular expressions and strings allowed (got {type(value).__name__}: {value!r})"
        )


class InvalidPriorityError(MehpiError, ValueError):
    """Pattern priority is not an integer in the allowed range."""

    def __init__(self, priority, limit: int):
        self.priority = priority
        self.limit = limit
        super().__init__(f"'priority' must be an integer between 0 and {limit} (got {priority!r})")


class TransportError(MehpiError):
    """Failure of the underlying HTTP listener."""

    action = "operate"

    def __init__(self, port: Optional[int], cause: Optional[BaseException] = None, message: str = ""):
        self.port = port
        self.cause = cause
        detail = message or (str(cause) if cause else "unknown error")
        super().__init__(f"Failed to {self.action} server (port: {port}) / {detail}")
        self.__cause__ = cause


class BindError(TransportError):
    """Listener could not be bound or did not come up."""

    action = "start"


class CloseError(TransportError):
    """Listener could not be closed cleanly."""

    action = "stop"
