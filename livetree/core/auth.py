"""
Pluggable access token acquisition.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable

__all__ = [
    "AuthMode",
    "TokenSource",
    "StaticTokenSource",
    "CallbackTokenSource",
]

TokenCallback = Callable[[str | None, BaseException | str | None], None]


class AuthMode(Enum):
    """
    How the token is passed to the server, valued by its query parameter.
    """

    SECRET = "auth"
    """Database secret or ID token"""

    ACCESS_TOKEN = "access_token"
    """OAuth2 access token"""


class TokenSource(ABC):
    """
    Provides a token for each request and each stream connection.
    """

    @abstractmethod
    async def acquire_token(self) -> str | None:
        """
        Get a token, or `None`{l=python} for unauthenticated access. Raises
        on failure.
        """
        ...


class StaticTokenSource(TokenSource):
    """
    Passes through a configured credential unchanged.
    """

    _token: str | None

    def __init__(self, token: str | None):
        self._token = token

    async def acquire_token(self) -> str | None:
        return self._token


class CallbackTokenSource(TokenSource):
    """
    Adapts a function which takes a completion callback, e.g.:

    ```
    def get_token(callback):
        callback(token, None)  # or callback(None, error)
    ```

    The callback must be invoked on the event loop's thread.
    """

    _acquire: Callable[[TokenCallback], None]

    def __init__(self, acquire: Callable[[TokenCallback], None]):
        self._acquire = acquire

    async def acquire_token(self) -> str | None:
        future: asyncio.Future[str | None] = (
            asyncio.get_running_loop().create_future()
        )

        def complete(token: str | None, error: BaseException | str | None):
            if future.done():
                return
            if isinstance(error, BaseException):
                future.set_exception(error)
            elif error is not None:
                future.set_exception(RuntimeError(error))
            else:
                future.set_result(token)

        self._acquire(complete)
        return await future
