"""Media server API client."""

from .errors import CancellationError, ServerAPIError, is_cancellation
from .client import SubsonicClient

__all__ = [
    "CancellationError",
    "ServerAPIError",
    "SubsonicClient",
    "is_cancellation",
]
