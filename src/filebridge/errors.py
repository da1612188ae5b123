"""Error taxonomy for remote file operations."""

from __future__ import annotations


class RemoteError(Exception):
    """Base class for every error raised by filebridge."""


class AuthError(RemoteError, ConnectionError):
    """The server rejected the credentials. Never retried."""


class ConnectError(RemoteError, ConnectionError):
    """Transport-level failure: refused, reset, timed out, or not connected."""


class ProtocolError(RemoteError):
    """The server rejected a single operation (permission, not found, ...)."""


class LocalIOError(RemoteError):
    """Reading or writing the local disk failed. Never retried."""


class PartialFailure(RemoteError):
    """A recursive operation stopped partway through the tree.

    ``completed`` lists the leaf operations that finished before ``cause``
    was raised. Nothing is rolled back.
    """

    def __init__(self, message: str, completed: list[str], cause: Exception) -> None:
        super().__init__(message)
        self.completed = list(completed)
        self.cause = cause


class ReconnectRetryError(RemoteError):
    """An operation failed, the connection was re-established, and the retry failed too."""

    def __init__(self, message: str, original: Exception, retry_error: Exception) -> None:
        super().__init__(message)
        self.original = original
        self.retry_error = retry_error


def is_retryable(error: Exception) -> bool:
    """Whether a failed remote action may be retried after reconnecting."""
    if isinstance(error, PartialFailure):
        return is_retryable(error.cause)
    if isinstance(error, (AuthError, LocalIOError)):
        return False
    return isinstance(error, RemoteError)
