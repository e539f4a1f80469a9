"""
Implements the local mirror of the streamed subtree.
"""

from __future__ import annotations

from typing import Any

from .events import ChangeEvent, EventKind
from .exceptions import ProtocolError
from .paths import split_path
from .value import Value

__all__ = [
    "CacheTree",
]


class CacheTree:
    """
    In-memory copy of the remote subtree, reconciled from change events.

    No container reachable from the root is ever empty after
    {obj}`CacheTree.apply` returns; the root itself may be.
    """

    _root: Value

    def __init__(self):
        self._root = Value.keyed()

    def __str__(self):
        return f"CacheTree: {self.to_json()}"

    @property
    def root(self) -> Value:
        return self._root

    def to_json(self) -> Any:
        return self._root.to_json()

    def get(self, path: str) -> Any:
        """
        Get copy of the value at path, or `None`{l=python} if nothing is
        cached there. Never mutates the tree.
        """
        node = self.lookup(path)
        return node.to_json() if node is not None else None

    def lookup(self, path: str) -> Value | None:
        return self._root.walk(split_path(path))

    def clear(self):
        self._root = Value.keyed()

    def apply(self, event: ChangeEvent):
        """
        Apply a put or patch event to the tree.
        """
        assert event.kind.is_change, f"Not a change event: {event}"

        keys = split_path(event.path)

        if event.kind is EventKind.PUT:
            if not keys:
                self._root = Value.from_json(event.data) or Value.keyed()
            else:
                parent = self._descend(self._heal_root(), keys[:-1])
                _put(parent, keys[-1], event.data)
        else:
            if not isinstance(event.data, dict):
                raise ProtocolError(
                    f"Patch at '{event.path}' has non-mapping data: {event.data!r}"
                )

            target = self._descend(self._heal_root(), keys)

            for key, data in event.data.items():
                sub_keys = split_path(str(key))
                if not sub_keys:
                    continue

                parent = self._descend(target, sub_keys[:-1])
                _put(parent, sub_keys[-1], data)

        self._root.prune()

    def _heal_root(self) -> Value:
        if not self._root.is_container:
            self._root = Value.keyed()
        return self._root

    def _descend(self, node: Value, keys: list[str]) -> Value:
        """
        Walk through keys, replacing anything which isn't a container with
        an empty keyed container.
        """
        for key in keys:
            child = node.get(key)

            if child is None or not child.is_container:
                child = Value.keyed()
                node.set(key, child)

            node = child

        return node


def _put(parent: Value, key: str, data: Any):
    value = Value.from_json(data)

    if value is None:
        parent.remove(key)
    else:
        parent.set(key, value)
