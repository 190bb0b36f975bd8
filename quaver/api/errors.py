"""
Media server API errors.
"""

import asyncio


class ServerAPIError(Exception):
    """Media server API error."""

    def __init__(self, message: str, status: int = 0, code: int = 0):
        super().__init__(message)
        self.status = status
        self.code = code


class CancellationError(ServerAPIError):
    """A request was aborted before it completed."""

    cancelled = True


def is_cancellation(error: BaseException) -> bool:
    """
    Check whether an error only marks an aborted request.

    Cancellations are expected (the user moved on before a fetch finished)
    and are dropped silently instead of being reported.
    """
    if isinstance(error, (CancellationError, asyncio.CancelledError)):
        return True
    return bool(getattr(error, "cancelled", False))
