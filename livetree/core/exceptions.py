from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .transport import Response

__all__ = [
    "LivetreeError",
    "TransportError",
    "ProtocolError",
    "RateLimitedError",
    "ApplicationError",
]


class LivetreeError(Exception):
    """
    Base class of errors raised by this package.
    """


class TransportError(LivetreeError):
    """
    Raised when a request completes with a non-success status code.

    A `status_code` of `0`{l=python} denotes a failure before any request was
    issued, e.g. failing to acquire a token.
    """

    status_code: int
    response: Response | None

    def __init__(
        self,
        status_code: int,
        message: str,
        response: Response | None = None,
    ):
        self.status_code = status_code
        self.response = response
        super().__init__(f"status={status_code}: {message}")


class ProtocolError(LivetreeError):
    """
    Raised when data received from the server doesn't conform to the expected
    wire format.
    """


class RateLimitedError(LivetreeError):
    """
    Raised without attempting a request while the server's overload
    lockout is active.
    """

    remaining: float

    def __init__(self, remaining: float):
        self.remaining = remaining
        super().__init__(
            f"Too many requests: locked out for another {remaining:.2f}s"
        )


class ApplicationError(LivetreeError):
    """
    Raised when the server reports an error in an otherwise successful
    response.
    """

    error: str

    def __init__(self, error: str):
        self.error = error
        super().__init__(f"Server reported error: {error}")
