"""
Implementation of the streaming connection lifecycle: connect, keepalive
watchdog, redirects and reconnect with backoff.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum, auto
from functools import partial
from typing import TYPE_CHECKING, Any, Callable, Mapping
from urllib.parse import urlsplit

from .backoff import OVERLOAD_STATUSES
from .events import ChangeEvent, EventKind
from .exceptions import ProtocolError, TransportError
from .frames import FrameDecoder
from .transport import Response, StreamHandle

if TYPE_CHECKING:
    from .session import Session

__all__ = [
    "StreamState",
    "Stream",
]

STREAM_HEADERS = {"Accept": "text/event-stream"}

ErrorCallback = Callable[[Response], Any]


class StreamState(Enum):
    """
    State of the stream.
    """

    IDLE = auto()
    """No stream requested"""

    CONNECTING = auto()
    """Acquiring token or waiting for lockout to expire"""

    STREAMING = auto()
    """Connection open"""

    BACKOFF = auto()
    """Waiting to reconnect after a transient failure"""


@dataclass
class StreamContext:
    """
    Parameters of a requested stream, carried across reconnects.
    """

    path: str
    params: Mapping[str, Any] | None
    on_error: ErrorCallback | None


class Stream:
    """
    Supervises a single streaming connection, feeding received events to
    the session's cache and listeners.

    Each connection attempt gets a new generation number; callbacks bound to
    an older generation are ignored, so a torn-down connection can't affect
    the state of its successor.
    """

    _session: Session
    _state: StreamState
    _context: StreamContext | None
    _generation: int
    _decoder: FrameDecoder
    _handle: StreamHandle | None
    _task: asyncio.Task | None
    _keepalive_timer: asyncio.TimerHandle | None
    _retry_timer: asyncio.TimerHandle | None

    def __init__(self, session: Session):
        self._session = session
        self._state = StreamState.IDLE
        self._context = None
        self._generation = 0
        self._decoder = FrameDecoder(session._logger)
        self._handle = None
        self._task = None
        self._keepalive_timer = None
        self._retry_timer = None

    def __str__(self):
        path = self._context.path if self._context else None
        return f"Stream: state={self._state.name}, path={path}, generation={self._generation}"

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def path(self) -> str | None:
        return self._context.path if self._context else None

    @property
    def is_active(self) -> bool:
        return self._state is not StreamState.IDLE

    def start(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        on_error: ErrorCallback | None = None,
    ) -> bool:
        """
        Start streaming path.

        :returns: `False`{l=python} if a stream is already active
        """
        if self.is_active:
            self._session._logger.warning(
                f"Stream already active, ignoring request for '{path}': {self}"
            )
            return False

        self._context = StreamContext(path, params, on_error)
        self._connect()
        return True

    def close(self):
        """
        Tear down any connection and timers. Safe to call in any state.
        """
        if self.is_active:
            self._session._logger.debug(f"Closing {self}")

        self._generation += 1
        self._teardown()
        self._state = StreamState.IDLE
        self._context = None

    def _connect(self):
        """
        (Re)connect using the current context.
        """
        assert self._context is not None

        self._teardown()
        self._generation += 1
        self._state = StreamState.CONNECTING
        self._decoder.reset()

        self._session._logger.debug(f"Connecting: {self}")

        self._task = self._session._loop.create_task(
            self._open(self._generation)
        )

    async def _open(self, generation: int):
        session = self._session
        backoff = session._backoff

        try:
            token = await session._acquire_token()
        except TransportError as e:
            if generation == self._generation:
                session._logger.error(f"Failed to start stream: {e}")
                self._fail(e.response or Response(0, str(e)))
            return

        if generation != self._generation:
            return

        if backoff.is_locked_out:
            session._logger.debug(
                f"Requests locked out, deferring stream for {backoff.remaining:.2f}s"
            )
            self._schedule_retry(backoff.remaining)
            return

        context = self._context
        assert context is not None

        try:
            url = session._dispatcher.build_url(
                context.path, context.params, token
            )
            self._handle = session._transport.open_stream(
                url,
                STREAM_HEADERS,
                partial(self._on_data, generation),
                partial(self._on_exit, generation),
            )
        except Exception as e:
            session._logger.exception(f"Failed to open stream: {self}")
            self._fail(Response(0, str(e)))
            return

        self._state = StreamState.STREAMING
        self._arm_keepalive()

        session._logger.debug(f"Stream opened: {self}")

    def _on_data(self, generation: int, chunk: str):
        if generation != self._generation:
            return

        session = self._session

        # any traffic, including keep-alive, proves liveness
        self._arm_keepalive()
        session._backoff.reset()

        for event in self._decoder.feed(chunk):
            self._handle_event(event)

            # a listener may have closed or restarted the stream
            if generation != self._generation:
                return

    def _handle_event(self, event: ChangeEvent):
        session = self._session

        if event.kind is EventKind.AUTH_REVOKED:
            session._logger.info(
                f"Credential revoked, reconnecting: {event.data}"
            )
            self._connect()
            return

        if event.kind is EventKind.CANCEL:
            session._logger.error(f"Stream cancelled by server: {event.data}")
            self._generation += 1
            self._teardown()
            self._fail(Response(0, str(event.data or "stream cancelled")))
            return

        try:
            session._cache.apply(event)
        except ProtocolError as e:
            session._logger.warning(f"Ignoring event: {e}")
            return

        count = session._listeners.dispatch(event, session._cache)

        session._logger.debug(
            f"Applied {event.kind.value} at '{event.path}', notified {count} listeners"
        )

    def _on_exit(self, generation: int, response: Response):
        if generation != self._generation:
            return

        session = self._session
        backoff = session._backoff

        self._handle = None
        self._cancel_keepalive()

        if response.is_redirect:
            location = response.location
            assert location is not None

            backoff.reset()
            session._redirect(_get_authority(location))
            self._connect()

        elif response.is_success:
            interval = backoff.next_interval()
            session._logger.debug(
                f"Stream ended by server, reconnecting in {interval}s"
            )
            self._state = StreamState.BACKOFF
            self._schedule_retry(interval)

        elif response.status_code in OVERLOAD_STATUSES or response.status_code == 0:
            interval = backoff.next_interval()
            session._logger.warning(
                f"Stream interrupted with status={response.status_code}, reconnecting in {interval}s"
            )
            self._state = StreamState.BACKOFF
            self._schedule_retry(interval)

        else:
            session._logger.error(
                f"Stream failed with status={response.status_code}: {response.text}"
            )
            backoff.reset()
            self._fail(response)

    def _fail(self, response: Response):
        """
        Return to idle and report the error.
        """
        context = self._context

        self._state = StreamState.IDLE
        self._context = None

        if context is not None and context.on_error is not None:
            context.on_error(response)

    def _on_keepalive_expired(self, generation: int):
        if generation != self._generation:
            return

        self._keepalive_timer = None
        self._session._logger.warning(
            f"No traffic for {self._session.config.keepalive_timeout}s, reconnecting"
        )
        self._connect()

    def _on_retry(self, generation: int):
        if generation != self._generation:
            return

        self._retry_timer = None
        self._connect()

    def _arm_keepalive(self):
        self._cancel_keepalive()
        self._keepalive_timer = self._session._loop.call_later(
            self._session.config.keepalive_timeout,
            self._on_keepalive_expired,
            self._generation,
        )

    def _cancel_keepalive(self):
        if self._keepalive_timer is not None:
            self._keepalive_timer.cancel()
            self._keepalive_timer = None

    def _schedule_retry(self, delay: float):
        if self._retry_timer is not None:
            self._retry_timer.cancel()
        self._retry_timer = self._session._loop.call_later(
            delay, self._on_retry, self._generation
        )

    def _teardown(self):
        """
        Cancel connection, pending token acquisition and timers.
        """
        self._cancel_keepalive()

        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

        task = self._task
        self._task = None
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()

        handle = self._handle
        self._handle = None
        if handle is not None:
            handle.cancel()


def _get_authority(location: str) -> str:
    """
    Get scheme and host of a redirect location.
    """
    parts = urlsplit(location)
    return f"{parts.scheme}://{parts.netloc}"
