from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .paths import normalize_path

__all__ = [
    "EventKind",
    "ChangeEvent",
]


class EventKind(Enum):
    """
    Kind of event received on the stream, valued by its name on the wire.
    """

    PUT = "put"
    """Subtree at path now equals data, or is deleted if data is null"""

    PATCH = "patch"
    """Merge the children in data into the subtree at path"""

    KEEP_ALIVE = "keep-alive"
    """No-op traffic sent periodically by the server"""

    CANCEL = "cancel"
    """Server cancelled the stream, e.g. read access was revoked"""

    AUTH_REVOKED = "auth_revoked"
    """Credential expired; the stream must be reopened with a new token"""

    @property
    def is_change(self) -> bool:
        return self in (EventKind.PUT, EventKind.PATCH)


@dataclass(frozen=True)
class ChangeEvent:
    """
    Change event decoded from the stream. For control events (`cancel`,
    `auth_revoked`), `data` holds the reason given by the server.
    """

    kind: EventKind
    path: str
    data: Any = None

    @property
    def normalized_path(self) -> str:
        return normalize_path(self.path)

    @property
    def is_root(self) -> bool:
        return self.normalized_path == ""
