"""
Implementation of one-shot REST requests.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Mapping
from urllib.parse import quote, urlencode

from .auth import AuthMode
from .backoff import OVERLOAD_STATUSES
from .exceptions import (
    ApplicationError,
    ProtocolError,
    RateLimitedError,
    TransportError,
)
from .paths import split_path
from .transport import Response

if TYPE_CHECKING:
    from .session import Session

__all__ = [
    "Dispatcher",
    "QUOTED_PARAMS",
]

QUOTED_PARAMS = frozenset({"startAt", "endAt", "equalTo", "orderBy"})
"""
Query parameters whose string values must be sent as quoted literals.
"""

JSON_HEADERS = {"Content-Type": "application/json"}

_NO_BODY = object()


class Dispatcher:
    """
    Builds URLs and issues one-shot requests, applying the overload lockout
    shared with the stream.
    """

    host: str
    """
    Base URL of the server, e.g. `https://example.firebaseio.com`. Updated
    when the stream is redirected.
    """

    namespace: str
    auth_mode: AuthMode

    _session: Session

    def __init__(
        self,
        session: Session,
        host: str,
        namespace: str,
        auth_mode: AuthMode = AuthMode.SECRET,
    ):
        self._session = session
        self.host = host.rstrip("/")
        self.namespace = namespace
        self.auth_mode = auth_mode

    def build_url(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        token: str | None = None,
    ) -> str:
        """
        Get URL of the JSON document at path.

        :param path: Slash-delimited path, `"/"` for root
        :param params: Additional query parameters
        :param token: Token to pass according to the auth mode, if any
        """
        resource = "".join(
            f"/{quote(key, safe='')}" for key in split_path(path)
        )

        query: dict[str, str] = {"ns": self.namespace}

        if token is not None:
            query[self.auth_mode.value] = token

        for name, value in (params or {}).items():
            if value is not None:
                query[name] = encode_param(name, value)

        return f"{self.host}{resource or '/'}.json?{urlencode(query)}"

    async def read(
        self, path: str, params: Mapping[str, Any] | None = None
    ) -> Any:
        """
        Get value at path.
        """
        return await self._dispatch("GET", path, params=params)

    async def push(self, path: str, data: Any) -> Any:
        """
        Add a child with a server-generated key.

        :returns: Server response containing the new key as `name`
        """
        return await self._dispatch("POST", path, data=data)

    async def write(self, path: str, data: Any) -> Any:
        """
        Replace value at path.
        """
        return await self._dispatch("PUT", path, data=data)

    async def update(self, path: str, data: Mapping[str, Any]) -> Any:
        """
        Merge children into value at path.
        """
        return await self._dispatch("PATCH", path, data=data)

    async def remove(self, path: str) -> Any:
        """
        Delete value at path.
        """
        return await self._dispatch("DELETE", path)

    async def _dispatch(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        data: Any = _NO_BODY,
    ) -> Any:
        backoff = self._session._backoff

        if backoff.is_locked_out:
            raise RateLimitedError(backoff.remaining)

        token = await self._session._acquire_token()
        url = self.build_url(path, params, token)
        body = json.dumps(data) if data is not _NO_BODY else None

        self._session._logger.debug(f"Request: {method} '{path}'")

        response = await self._session._transport.request(
            method, url, JSON_HEADERS, body
        )

        return self._handle_response(method, path, response)

    def _handle_response(
        self, method: str, path: str, response: Response
    ) -> Any:
        """
        Normalize response to data, or raise an error.
        """
        logger = self._session._logger
        backoff = self._session._backoff
        status = response.status_code

        if status == 0:
            logger.error(f"{method} '{path}' failed: {response.text}")
            raise TransportError(0, response.text, response)

        if status in OVERLOAD_STATUSES:
            backoff.record_overload()
            logger.warning(
                f"{method} '{path}' got status={status}, locking out requests for {backoff.remaining:.2f}s"
            )
            raise TransportError(status, "server overloaded", response)

        backoff.reset()

        try:
            data = response.json()
        except ValueError as e:
            if not response.is_success:
                raise TransportError(status, response.text, response)
            raise ProtocolError(
                f"{method} '{path}' returned invalid JSON: {e}"
            ) from e

        error = _get_error(data)

        if not response.is_success:
            logger.debug(f"{method} '{path}' got status={status}: {error}")
            raise TransportError(status, error or response.text, response)

        if error is not None:
            raise ApplicationError(error)

        return data


def encode_param(name: str, value: Any) -> str:
    """
    Encode query parameter value as expected by the server.
    """
    if name in QUOTED_PARAMS and isinstance(value, str):
        return f'"{value}"'
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _get_error(data: Any) -> str | None:
    """
    Get error reported in response body, which is an object with the single
    member `error`.
    """
    if isinstance(data, dict) and set(data.keys()) == {"error"}:
        return str(data["error"])
    return None
