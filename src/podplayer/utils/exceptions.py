"""
Custom exceptions for the podcast player controller.

Defines the error taxonomy raised by the transport, the queue engine and the
command facade so callers can map each kind to a user-facing response.
"""

from typing import Any, List, Optional


class PlayerControlError(Exception):
    """
    Base exception for every controller error.

    Attributes:
        message (str): Detailed error message
        code (int): Optional error code (HTTP-like, for the calling layer)
    """
    def __init__(self, message: str, code: int = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class TransportError(PlayerControlError):
    """
    Raised when the mpv control socket is unavailable or has been closed.

    Examples:
        >>> raise TransportError("Not connected to mpv")
        >>> raise TransportError("Connection to mpv lost", code=503)
    """
    def __init__(self, message: str, code: int = 503):
        super().__init__(message, code)


class RequestTimeout(PlayerControlError):
    """Raised when mpv does not answer a request within the command timeout."""

    def __init__(self, message: str, request_id: Optional[int] = None, code: int = 504):
        self.request_id = request_id
        super().__init__(message, code)


class RemoteCommandError(PlayerControlError):
    """
    Raised when mpv rejects a command.

    Attributes:
        command (list): The command that was rejected
    """
    def __init__(self, message: str, command: Optional[List[Any]] = None, code: int = 500):
        self.command = command
        super().__init__(message, code)


class QueueError(PlayerControlError):
    """
    Base class for queue validation errors.

    Examples:
        >>> raise QueueError("Queue is empty")
        >>> raise QueueError("Invalid queue index", code=400)
    """
    def __init__(self, message: str, code: int = 400):
        super().__init__(message, code)


class InvalidIndex(QueueError):
    pass


class DuplicateItem(QueueError):
    def __init__(self, message: str = "Episode already in queue", code: int = 409):
        super().__init__(message, code)


class CannotRemovePlaying(QueueError):
    def __init__(self, message: str = "Cannot remove currently playing episode. Use skip or stop instead.",
                 code: int = 409):
        super().__init__(message, code)


class InvalidSortSpec(QueueError):
    pass


class NothingPlaying(PlayerControlError):
    """Raised when a playback control call is made with no current item."""

    def __init__(self, message: str = "Nothing is playing", code: int = 400):
        super().__init__(message, code)


class ContentUnavailable(PlayerControlError):
    """
    Raised when the referenced episode is missing or not materialized on disk.

    Examples:
        >>> raise ContentUnavailable("Episode not found", code=404)
        >>> raise ContentUnavailable("Episode not downloaded", code=400)
    """
    pass
