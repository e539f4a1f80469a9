"""
Path-scoped listener registration and dispatch of change events.
"""

from __future__ import annotations

import logging
from logging import Logger, LoggerAdapter
from typing import Any, Callable

from .cache import CacheTree
from .events import ChangeEvent, EventKind
from .paths import display_path, join_path, normalize_path

__all__ = [
    "Listener",
    "ListenerRegistry",
]

Listener = Callable[[str, Any], Any]
"""
Callback invoked as `callback(path, value)`{l=python}.
"""


class ListenerRegistry:
    """
    Mapping of normalized path to listener. Registering a path again
    replaces its listener.
    """

    _listeners: dict[str, Listener]
    _logger: Logger | LoggerAdapter

    def __init__(self, logger: Logger | LoggerAdapter | None = None):
        self._listeners = dict()
        self._logger = logger or logging.getLogger("livetree")

    def __len__(self) -> int:
        return len(self._listeners)

    def __contains__(self, path: str) -> bool:
        return normalize_path(path) in self._listeners

    @property
    def paths(self) -> list[str]:
        return list(self._listeners.keys())

    def on(self, path: str, callback: Listener):
        self._listeners[normalize_path(path)] = callback

    def off(self, path: str) -> bool:
        """
        Remove listener at path.

        :returns: Whether a listener was registered
        """
        return self._listeners.pop(normalize_path(path), None) is not None

    def dispatch(self, event: ChangeEvent, tree: CacheTree) -> int:
        """
        Notify listeners affected by an event which was already applied to
        the tree. An exception raised by a listener is logged and doesn't
        prevent the others from being notified.

        :returns: Number of listeners invoked
        """
        count = 0

        # copy in case a listener (de)registers listeners
        for path, callback in list(self._listeners.items()):
            match = self.resolve(path, event, tree)
            if match is None:
                continue

            count += 1

            try:
                callback(*match)
            except Exception:
                self._logger.exception(
                    f"Listener at '{display_path(path)}' raised an exception"
                )

        return count

    @staticmethod
    def resolve(
        path: str, event: ChangeEvent, tree: CacheTree
    ) -> tuple[str, Any] | None:
        """
        Determine what a listener at `path` observes for this event.

        :returns: Arguments for the listener, or `None`{l=python} if it isn't affected
        """
        event_path = event.normalized_path

        if event_path == "":
            return (display_path(path), tree.get(path))

        if path == event_path:
            return (display_path(event_path), event.data)

        if event.kind is EventKind.PATCH and isinstance(event.data, dict):
            for key in event.data:
                child_path = join_path(event_path, str(key))
                if child_path == path:
                    return (display_path(path), tree.get(child_path))

        if event_path.startswith(path + "/") or path == "":
            # listener is an ancestor: the value at its path includes the
            # changed child one level down
            return (display_path(path), tree.get(path))

        if path.startswith(event_path + "/"):
            return (display_path(path), tree.get(path))

        return None
