"""
Implementation of session functionality.
"""

from __future__ import annotations

import asyncio
import logging
import time
from logging import Logger, LoggerAdapter
from typing import Any, Awaitable, Callable, Mapping, Self
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator, model_validator

from .auth import AuthMode, StaticTokenSource, TokenSource
from .backoff import DEFAULT_BACKOFF, MAX_BACKOFF, Backoff
from .cache import CacheTree
from .dispatcher import Dispatcher
from .exceptions import TransportError
from .listeners import Listener, ListenerRegistry
from .paths import normalize_path
from .stream import ErrorCallback, Stream, StreamState
from .transport import (
    REQUEST_TIMEOUT,
    BaseTransport,
    RequestsTransport,
    Response,
)

__all__ = [
    "Session",
    "SessionConfig",
]
__canonical_syms__ = __all__


KEEPALIVE_TIMEOUT = 60.0
"""
Seconds without any stream traffic after which the connection is presumed
dead. The server sends keep-alive frames every 30 seconds.
"""

ResultCallback = Callable[[BaseException | None, Any], Any]
"""
Callback invoked as `callback(error, data)`{l=python} upon completion of a
request.
"""


class SessionConfig(BaseModel):
    """
    Connection and timing settings of a {obj}`Session`.
    """

    host: str
    """
    Base URL of the server, e.g. `https://my-db.firebaseio.com`.
    """

    namespace: str | None = None
    """
    Namespace passed with every request; derived from the host's first DNS
    label if not provided.
    """

    auth_mode: AuthMode = AuthMode.SECRET
    """
    Whether the token is passed as `auth` or `access_token`.
    """

    keepalive_timeout: float = Field(KEEPALIVE_TIMEOUT, gt=0)
    default_backoff: float = Field(DEFAULT_BACKOFF, gt=0)
    max_backoff: float = Field(MAX_BACKOFF, gt=0)
    request_timeout: float = Field(REQUEST_TIMEOUT, gt=0)

    debug: bool = False
    """
    Enable diagnostic logging.
    """

    @field_validator("host")
    def validate_host(cls, value: str) -> str:
        parts = urlsplit(value)
        if parts.scheme not in {"http", "https"} or not parts.netloc:
            raise ValueError(f"expected http(s) URL, got '{value}'")
        return value.rstrip("/")

    @model_validator(mode="after")
    def validate_config(self) -> Self:
        if self.max_backoff < self.default_backoff:
            raise ValueError("max_backoff must be at least default_backoff")

        if not self.namespace:
            hostname = urlsplit(self.host).hostname
            assert hostname
            self.namespace = hostname.split(".")[0]

        return self


class Session:
    """
    Interface to a remote tree: one-shot requests, and a stream mirrored
    into a local cache with path-scoped listeners.

    Streaming and requests must be used from within a running
    {obj}`asyncio` event loop; all state is only touched from the loop's
    thread.

    Paths passed to {obj}`Session.on` and {obj}`Session.from_cache` are
    relative to the path being streamed.

    Example:

    ```
    async with Session("https://my-db.firebaseio.com", token) as session:
        session.on("/users", lambda path, value: print(path, value))
        session.stream("/")
        ...
    ```
    """

    _config: SessionConfig
    _token_source: TokenSource
    _transport: BaseTransport
    _backoff: Backoff
    _cache: CacheTree
    _cache_path: str | None
    """
    Path of the stream whose data is in the cache.
    """

    _listeners: ListenerRegistry
    _dispatcher: Dispatcher
    _stream: Stream
    _loop: asyncio.AbstractEventLoop | None

    _logger: LoggerAdapter
    """
    Logger to use, gated by {obj}`SessionConfig.debug`.
    """

    def __init__(
        self,
        host: str | SessionConfig,
        token: str | None = None,
        *,
        token_source: TokenSource | None = None,
        transport: BaseTransport | None = None,
        logger: Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        :param host: Base URL of the server, or complete configuration
        :param token: Static credential, if `token_source` not provided
        :param token_source: Provider of tokens, e.g. for expiring credentials
        :param transport: HTTP transport, or `None` to use `requests`
        :param logger: Logger to use, or `None` to use the `livetree` logger
        :param clock: Monotonic clock for overload lockouts
        """
        self._config = (
            host
            if isinstance(host, SessionConfig)
            else SessionConfig(host=host)
        )

        self._logger = _DebugLogger(
            logger or logging.getLogger("livetree"), self._config.debug
        )

        self._token_source = token_source or StaticTokenSource(token)
        self._transport = transport or RequestsTransport(
            timeout=self._config.request_timeout, logger=self._logger
        )
        self._backoff = Backoff(
            self._config.default_backoff,
            self._config.max_backoff,
            clock=clock,
        )
        self._cache = CacheTree()
        self._cache_path = None
        self._listeners = ListenerRegistry(self._logger)

        assert self._config.namespace is not None
        self._dispatcher = Dispatcher(
            self,
            self._config.host,
            self._config.namespace,
            self._config.auth_mode,
        )
        self._stream = Stream(self)
        self._loop = None

    async def __aenter__(self) -> Self:
        self._logger.debug(f"Entering context: {self}")
        return self

    async def __aexit__(self, exc_type, exc_val, traceback):
        if exc_type:
            self._logger.error(f"Exiting context with error: {self}")
        else:
            self._logger.debug(f"Exiting context: {self}")

        self.close_stream()

    def __str__(self):
        return f"Session(host='{self.host}', namespace='{self._config.namespace}')"

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def host(self) -> str:
        """
        Current base URL, which changes if the stream is redirected.
        """
        return self._dispatcher.host

    @property
    def cache(self) -> CacheTree:
        return self._cache

    @property
    def backoff(self) -> Backoff:
        return self._backoff

    @property
    def stream_state(self) -> StreamState:
        return self._stream.state

    def stream(
        self,
        path: str = "/",
        params: Mapping[str, Any] | None = None,
        on_error: ErrorCallback | None = None,
    ) -> bool:
        """
        Start streaming changes at path into the cache, notifying listeners.
        Reconnects transparently until {obj}`Session.close_stream` is called
        or a non-recoverable error occurs, which is passed to `on_error`.

        :param path: Path to stream
        :param params: Additional query parameters
        :param on_error: Invoked with the failed {obj}`Response`; status code `0` denotes a failure before a connection was made
        :returns: `False`{l=python} if a stream is already active
        """
        self._loop = asyncio.get_running_loop()

        if not self._stream.is_active:
            stream_path = normalize_path(path)
            if stream_path != self._cache_path:
                self._cache.clear()
                self._cache_path = stream_path

        return self._stream.start(path, params, on_error)

    @property
    def is_streaming(self) -> bool:
        return self._stream.is_active

    def close_stream(self):
        """
        Close the stream, if any. Safe to call at any time.
        """
        self._stream.close()

    def on(self, path: str, callback: Listener):
        """
        Register listener for changes at or around path, replacing any
        listener already registered there.

        :param path: Path relative to the streamed path
        :param callback: Invoked as `callback(path, value)`{l=python}
        """
        self._listeners.on(path, callback)

    def off(self, path: str) -> bool:
        """
        Deregister listener at path.
        """
        return self._listeners.off(path)

    def from_cache(self, path: str = "/") -> Any:
        """
        Get cached value at path, or `None`{l=python} if not cached.
        """
        return self._cache.get(path)

    def read(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        *,
        callback: ResultCallback | None = None,
    ) -> asyncio.Future | None:
        """
        Get value at path.

        If `callback` is provided, it's invoked as
        `callback(error, data)`{l=python} upon completion and `None`{l=python}
        is returned. Otherwise a future resolving to the data is returned.
        The same applies to the other request methods.
        """
        return self._deliver(self._dispatcher.read(path, params), callback)

    def push(
        self, path: str, data: Any, *, callback: ResultCallback | None = None
    ) -> asyncio.Future | None:
        """
        Add child with a generated key; the result holds the key as `name`.
        """
        return self._deliver(self._dispatcher.push(path, data), callback)

    def write(
        self, path: str, data: Any, *, callback: ResultCallback | None = None
    ) -> asyncio.Future | None:
        """
        Replace value at path.
        """
        return self._deliver(self._dispatcher.write(path, data), callback)

    def update(
        self,
        path: str,
        data: Mapping[str, Any],
        *,
        callback: ResultCallback | None = None,
    ) -> asyncio.Future | None:
        """
        Merge children into value at path.
        """
        return self._deliver(self._dispatcher.update(path, data), callback)

    def remove(
        self, path: str, *, callback: ResultCallback | None = None
    ) -> asyncio.Future | None:
        """
        Delete value at path.
        """
        return self._deliver(self._dispatcher.remove(path), callback)

    async def _acquire_token(self) -> str | None:
        try:
            return await self._token_source.acquire_token()
        except Exception as e:
            raise TransportError(
                0, f"failed to acquire token: {e}", Response(0, str(e))
            ) from e

    def _redirect(self, host: str):
        self._logger.info(f"Redirected from '{self.host}' to '{host}'")
        self._dispatcher.host = host

    def _deliver(
        self, request: Awaitable[Any], callback: ResultCallback | None
    ) -> asyncio.Future | None:
        """
        Schedule request, adapting the result to a callback if provided.
        """
        future = asyncio.ensure_future(request)

        if callback is None:
            return future

        def done(future: asyncio.Future):
            if future.cancelled():
                callback(asyncio.CancelledError(), None)
            elif (error := future.exception()) is not None:
                callback(error, None)
            else:
                callback(None, future.result())

        future.add_done_callback(done)
        return None


class _DebugLogger(LoggerAdapter):
    """
    Suppresses all output unless debug logging is enabled.
    """

    enabled: bool

    def __init__(self, logger: Logger, enabled: bool):
        super().__init__(logger, {})
        self.enabled = enabled

    def isEnabledFor(self, level: int) -> bool:
        return self.enabled and self.logger.isEnabledFor(level)
