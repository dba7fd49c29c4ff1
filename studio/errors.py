"""Error taxonomy for the studio core.

Only ``TaskError`` subclasses reach the user. ``TrackingError`` is absorbed
by the activity tracker and ``PersistenceError`` by the history store.
"""

from __future__ import annotations


class StudioError(Exception):
    """Base class for studio errors."""

    kind = "studio"


class TaskError(StudioError):
    """A task attempt failed in a way the user should see."""

    kind = "task"


class TransportError(TaskError):
    """The agent could not be reached or answered with garbage."""

    kind = "transport"
    default_message = "Network error. Please check your connection and try again."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class RemoteFailure(TaskError):
    """The agent answered and reported that the task failed."""

    kind = "remote"


class EmptyResponse(TaskError):
    """The agent reported success without a usable payload."""

    kind = "empty"
    default_message = "Received empty response from agent."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class TrackingError(StudioError):
    """An activity feed poll failed."""

    kind = "tracking"


class PersistenceError(StudioError):
    """Reading or writing a storage slot failed."""

    kind = "persistence"


class StudioBusyError(StudioError):
    """A screen was asked to start a task while one is still running."""

    kind = "busy"
