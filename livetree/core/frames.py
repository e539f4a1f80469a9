"""
Decoding of the server-sent event stream into change events.

Frames on the wire look like:

```
event: put
data: {"path": "/a", "data": {"b": 1}}

```

Error frames are JSON objects spanning multiple lines, the last of which is
exactly `}`.
"""

from __future__ import annotations

import json
import logging
from logging import Logger, LoggerAdapter
from typing import Any

from .events import ChangeEvent, EventKind
from .exceptions import ProtocolError

__all__ = [
    "FrameDecoder",
]

EVENT_PREFIX = "event:"
DATA_PREFIX = "data:"
ERROR_TERMINATOR = "}"


class FrameDecoder:
    """
    Converts chunks of stream text into change events, carrying over any
    trailing partial frame to the next call of {obj}`FrameDecoder.feed`.

    Keep-alive frames don't produce events; error frames are logged and
    don't produce events either.
    """

    _buffer: str
    """
    Partial frame text carried over from the previous chunk.
    """

    _logger: Logger | LoggerAdapter

    def __init__(self, logger: Logger | LoggerAdapter | None = None):
        self._buffer = ""
        self._logger = logger or logging.getLogger("livetree")

    @property
    def pending(self) -> str:
        """
        Partial frame text awaiting more input.
        """
        return self._buffer

    def reset(self):
        """
        Discard any partial frame, e.g. when a new connection is opened.
        """
        self._buffer = ""

    def feed(self, chunk: str) -> list[ChangeEvent]:
        """
        Decode as many frames as possible from the buffered text plus this
        chunk.

        :param chunk: Text of arbitrary length as received from the stream
        :returns: Decoded events, possibly none
        """
        text = self._buffer + chunk
        lines = [line.rstrip("\r") for line in text.split("\n")]
        self._buffer = ""

        events: list[ChangeEvent] = []

        # index of last available line, which may be incomplete
        last = len(lines) - 1
        i = 0

        while i <= last:
            line = lines[i]

            if not line:
                i += 1
                continue

            if line.startswith(EVENT_PREFIX):
                if i == last:
                    # need the data line too
                    self._retain(lines, i)
                    break

                try:
                    payload = _decode_data(lines[i + 1])
                except ProtocolError as e:
                    if i + 1 == last:
                        # data line may be completed by the next chunk
                        self._retain(lines, i)
                        break

                    self._logger.warning(
                        f"Dropping stream line {line!r} after decode failure: {e}"
                    )
                    i += 1
                    continue

                i += 2

                kind_name = line[len(EVENT_PREFIX) :].strip()
                event = self._to_event(kind_name, payload)
                if event is not None:
                    events.append(event)

                continue

            if line.startswith("{"):
                end = (
                    i
                    if line.endswith(ERROR_TERMINATOR)
                    else _find_terminator(lines, i + 1)
                )

                if end is None:
                    # wait for the rest of the error frame
                    self._retain(lines, i)
                    break

                self._log_error_frame("\n".join(lines[i : end + 1]))
                i = end + 1
            elif i == last:
                self._retain(lines, i)
                break
            else:
                self._logger.warning(
                    f"Dropping unexpected stream line {line!r}"
                )
                i += 1

        return events

    def _retain(self, lines: list[str], start: int):
        self._buffer = "\n".join(lines[start:])

    def _to_event(self, kind_name: str, payload: Any) -> ChangeEvent | None:
        """
        Create event from decoded frame, or return `None`{l=python} if the
        frame doesn't produce an event.
        """
        try:
            kind = EventKind(kind_name)
        except ValueError:
            self._logger.warning(f"Ignoring unknown stream event '{kind_name}'")
            return None

        if kind is EventKind.KEEP_ALIVE:
            return None

        if not kind.is_change:
            return ChangeEvent(kind, "/", payload)

        if not isinstance(payload, dict) or not isinstance(
            payload.get("path"), str
        ):
            self._logger.warning(
                f"Ignoring '{kind_name}' event with malformed payload: {payload!r}"
            )
            return None

        return ChangeEvent(kind, payload["path"], payload.get("data"))

    def _log_error_frame(self, text: str):
        try:
            error = json.loads(text)
        except ValueError as e:
            self._logger.warning(f"Failed to decode error frame {text!r}: {e}")
        else:
            self._logger.error(f"Received error from stream: {error}")


def _decode_data(line: str) -> Any:
    if not line.startswith(DATA_PREFIX):
        raise ProtocolError(f"expected data line, got {line!r}")

    try:
        return json.loads(line[len(DATA_PREFIX) :])
    except ValueError as e:
        raise ProtocolError(f"invalid JSON in data line: {e}") from e


def _find_terminator(lines: list[str], start: int) -> int | None:
    for index in range(start, len(lines)):
        if lines[index] == ERROR_TERMINATOR:
            return index
    return None
