"""
HTTP transport used for one-shot requests and the event stream.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from logging import Logger, LoggerAdapter
from typing import Any, Callable, Mapping

import requests
from requests.structures import CaseInsensitiveDict

__all__ = [
    "Response",
    "StreamHandle",
    "BaseTransport",
    "RequestsTransport",
]

REQUEST_TIMEOUT = 10.0
"""
Timeout for one-shot requests, and for establishing the stream connection.
"""

DataCallback = Callable[[str], None]
ExitCallback = Callable[["Response"], None]


@dataclass
class Response:
    """
    Result of a request: status code, headers and body text. A status code of
    `0`{l=python} denotes a failure before a response was received.
    """

    status_code: int
    text: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        self.headers = CaseInsensitiveDict(self.headers)

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def location(self) -> str | None:
        return self.headers.get("location")

    @property
    def is_redirect(self) -> bool:
        return 300 <= self.status_code < 400 and bool(self.location)

    def json(self) -> Any:
        """
        Decode body, or `None`{l=python} if it's empty.
        """
        return json.loads(self.text) if self.text else None


class StreamHandle(ABC):
    """
    Handle to an open stream connection.
    """

    @abstractmethod
    def cancel(self):
        """
        Close the connection; no further callbacks will be invoked. Must be
        safe to call more than once.
        """
        ...


class BaseTransport(ABC):
    """
    Interface to issue HTTP requests.
    """

    @abstractmethod
    async def request(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        body: str | None = None,
    ) -> Response:
        """
        Issue a one-shot request. Connection failures are reported as a
        response with status code `0`{l=python} rather than raised.
        """
        ...

    @abstractmethod
    def open_stream(
        self,
        url: str,
        headers: Mapping[str, str],
        on_data: DataCallback,
        on_exit: ExitCallback,
    ) -> StreamHandle:
        """
        Open a streaming GET request, without following redirects. Chunks of
        body text are passed to `on_data` and the terminal response to
        `on_exit`, both on the event loop's thread. No idle timeout is
        applied.
        """
        ...


class RequestsTransport(BaseTransport):
    """
    Transport implemented with `requests`, running blocking I/O in worker
    threads.
    """

    _session: requests.Session
    _timeout: float
    _logger: Logger | LoggerAdapter

    def __init__(
        self,
        *,
        timeout: float = REQUEST_TIMEOUT,
        session: requests.Session | None = None,
        logger: Logger | LoggerAdapter | None = None,
    ):
        self._session = session or requests.Session()
        self._timeout = timeout
        self._logger = logger or logging.getLogger("livetree")

    async def request(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        body: str | None = None,
    ) -> Response:
        return await asyncio.to_thread(
            self._request, method, url, headers, body
        )

    def open_stream(
        self,
        url: str,
        headers: Mapping[str, str],
        on_data: DataCallback,
        on_exit: ExitCallback,
    ) -> StreamHandle:
        handle = _RequestsStreamHandle(
            self._session,
            url,
            headers,
            loop=asyncio.get_running_loop(),
            on_data=on_data,
            on_exit=on_exit,
            timeout=self._timeout,
        )

        thread = threading.Thread(
            target=handle.run, name="livetree-stream", daemon=True
        )
        thread.start()

        return handle

    def _request(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None,
        body: str | None,
    ) -> Response:
        try:
            response = self._session.request(
                method,
                url,
                headers=dict(headers or {}),
                data=body.encode() if body is not None else None,
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            self._logger.debug(f"Request {method} failed: {e}")
            return Response(0, str(e))

        return Response(
            response.status_code, response.text, dict(response.headers)
        )


class _RequestsStreamHandle(StreamHandle):
    """
    Stream connection read by a dedicated thread, which hands chunks over
    to the event loop.
    """

    def __init__(
        self,
        session: requests.Session,
        url: str,
        headers: Mapping[str, str],
        *,
        loop: asyncio.AbstractEventLoop,
        on_data: DataCallback,
        on_exit: ExitCallback,
        timeout: float,
    ):
        self._session = session
        self._url = url
        self._headers = dict(headers)
        self._loop = loop
        self._on_data = on_data
        self._on_exit = on_exit
        self._timeout = timeout
        self._cancelled = threading.Event()
        self._response: requests.Response | None = None

    def cancel(self):
        self._cancelled.set()

        # unblocks the reading thread
        response = self._response
        if response is not None:
            response.close()

    def run(self):
        try:
            response = self._session.get(
                self._url,
                headers=self._headers,
                stream=True,
                allow_redirects=False,
                timeout=(self._timeout, None),
            )
        except requests.RequestException as e:
            self._exit(Response(0, str(e)))
            return

        self._response = response

        try:
            if self._cancelled.is_set():
                return

            if response.status_code != 200:
                self._exit(
                    Response(
                        response.status_code,
                        response.text,
                        dict(response.headers),
                    )
                )
                return

            response.encoding = "utf-8"

            for chunk in response.iter_content(
                chunk_size=None, decode_unicode=True
            ):
                if self._cancelled.is_set():
                    return
                if chunk:
                    self._post(self._on_data, chunk)

            self._exit(
                Response(response.status_code, "", dict(response.headers))
            )

        except Exception as e:
            # closing the response from cancel() interrupts the read
            self._exit(Response(0, str(e)))
        finally:
            response.close()

    def _exit(self, response: Response):
        self._post(self._on_exit, response)

    def _post(self, callback: Callable, arg: Any):
        if self._cancelled.is_set() or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(callback, arg)
