"""Error taxonomy shared by the store, the feed and the generation client."""

from __future__ import annotations

from typing import Any


class AirMemsError(Exception):
    """Base class for all AirMems failures."""


class StorageUnavailable(AirMemsError):
    """The local database could not be opened or created."""


class StoreNotInitialized(AirMemsError):
    """A store operation ran before ``initialize()`` completed."""

    def __init__(self, message: str = "Database not initialized"):
        super().__init__(message)


class NetworkFailure(AirMemsError):
    """The feed or the proxy could not be reached."""


class UpstreamError(AirMemsError):
    """The proxy answered with a non-2xx status.

    ``message`` and ``details`` carry the proxy's ``{error, details?}`` body
    verbatim so callers can show them to the user.
    """

    def __init__(self, message: str, *, status_code: int, details: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


class MalformedUpstreamResponse(AirMemsError):
    """A reply was not JSON or lacked required fields."""


class InvalidTransition(AirMemsError):
    """A lesson workflow action was called in a state that forbids it."""

    def __init__(self, action: str, state: Any):
        state_name = getattr(state, "value", state)
        super().__init__(f"Cannot {action} while in state '{state_name}'")
        self.action = action
        self.state = state


__all__ = [
    "AirMemsError",
    "StorageUnavailable",
    "StoreNotInitialized",
    "NetworkFailure",
    "UpstreamError",
    "MalformedUpstreamResponse",
    "InvalidTransition",
]
