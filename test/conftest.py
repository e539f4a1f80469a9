import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from pytest import Config, Parser, fixture

from livetree import (
    BaseTransport,
    Response,
    Session,
    SessionConfig,
    StreamHandle,
)

logging.basicConfig(level=logging.WARNING)

HOST = "https://test-db.example.com"
TOKEN = "test-token"

MARKERS = [
    "session_options",
]


def pytest_addoption(parser: Parser):
    parser.addoption(
        "--cli-stdout",
        action="store_true",
        help="Print stdout of CLI commands",
    )


def pytest_configure(config: Config) -> None:
    for marker in MARKERS:
        config.addinivalue_line("markers", marker)


@dataclass
class RecordedRequest:
    method: str
    url: str
    headers: dict[str, str]
    body: str | None


class FakeStream(StreamHandle):
    """
    Stream connection driven by the testcase.
    """

    def __init__(
        self,
        url: str,
        headers: Mapping[str, str],
        on_data: Callable[[str], None],
        on_exit: Callable[[Response], None],
    ):
        self.url = url
        self.headers = dict(headers)
        self.on_data = on_data
        self.on_exit = on_exit
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def send(self, text: str):
        self.on_data(text)

    def exit(
        self,
        status_code: int,
        text: str = "",
        headers: Mapping[str, str] | None = None,
    ):
        self.on_exit(Response(status_code, text, headers or {}))


class FakeTransport(BaseTransport):
    """
    In-memory transport: responses are queued by the testcase and stream
    connections are recorded.
    """

    def __init__(self):
        self.requests: list[RecordedRequest] = []
        self.responses: deque[Response] = deque()
        self.streams: list[FakeStream] = []

    def queue(self, status_code: int, text: str = "null", **headers: str):
        self.responses.append(Response(status_code, text, headers))

    async def request(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        body: str | None = None,
    ) -> Response:
        self.requests.append(
            RecordedRequest(method, url, dict(headers or {}), body)
        )
        if self.responses:
            return self.responses.popleft()
        return Response(200, "null")

    def open_stream(
        self,
        url: str,
        headers: Mapping[str, str],
        on_data: Callable[[str], None],
        on_exit: Callable[[Response], None],
    ) -> StreamHandle:
        stream = FakeStream(url, headers, on_data, on_exit)
        self.streams.append(stream)
        return stream

    @property
    def stream(self) -> FakeStream:
        """
        Most recently opened stream.
        """
        assert self.streams, "No stream opened"
        return self.streams[-1]


class FakeClock:
    """
    Manually advanced clock for lockout deadlines.
    """

    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@fixture
def transport() -> FakeTransport:
    return FakeTransport()


@fixture
def clock() -> FakeClock:
    return FakeClock()


@fixture
def create_session(
    transport: FakeTransport, clock: FakeClock
) -> Callable[..., Session]:
    """
    Get factory for sessions using the fake transport and clock, taking
    config options as keyword arguments.
    """

    def create(token: str | None = TOKEN, **options: Any) -> Session:
        config = SessionConfig(host=HOST, **options)
        return Session(config, token=token, transport=transport, clock=clock)

    return create


@fixture
def session(request, create_session: Callable[..., Session]) -> Session:
    """
    Create a session; options can be passed using
    `@mark.session_options(keepalive_timeout=...)`.
    """
    marker = request.node.get_closest_marker("session_options")
    options = marker.kwargs if marker else {}
    return create_session(**options)


@fixture
def settle() -> Callable[[], Any]:
    """
    Get coroutine function which lets pending tasks and callbacks run.
    """

    async def settle():
        for _ in range(5):
            await asyncio.sleep(0)

    return settle
