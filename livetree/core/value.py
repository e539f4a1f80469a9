"""
Tagged-variant representation of a subtree of the remote document.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Any, Iterable, Union

__all__ = [
    "ValueKind",
    "Value",
]

Scalar = Union[str, int, float, bool]
Key = Union[str, int]


class ValueKind(Enum):
    """
    Kind of a {obj}`Value`.
    """

    SCALAR = auto()
    """String, number or boolean"""

    INDEXED = auto()
    """Ordered container with integer keys, encoded as a JSON array"""

    KEYED = auto()
    """Container with string keys, encoded as a JSON object"""


class Value:
    """
    Node of the cache tree. The kind is explicit; `null` is never stored, an
    absent child denotes it instead.
    """

    __slots__ = ("kind", "scalar", "children")

    kind: ValueKind
    scalar: Scalar | None
    children: dict[Key, Value]

    def __init__(self, kind: ValueKind, scalar: Scalar | None = None):
        self.kind = kind
        self.scalar = scalar
        self.children = {}

    def __repr__(self) -> str:
        return f"Value({self.kind.name}, {self.to_json()!r})"

    @classmethod
    def keyed(cls) -> Value:
        return cls(ValueKind.KEYED)

    @classmethod
    def indexed(cls) -> Value:
        return cls(ValueKind.INDEXED)

    @classmethod
    def of(cls, scalar: Scalar) -> Value:
        return cls(ValueKind.SCALAR, scalar)

    @classmethod
    def from_json(cls, obj: Any) -> Value | None:
        """
        Convert decoded JSON to a tree of values. Returns `None`{l=python}
        for `null`; `null` members of containers are dropped.
        """
        if obj is None:
            return None

        node: Value

        if isinstance(obj, dict):
            node = cls.keyed()
            for key, item in obj.items():
                child = cls.from_json(item)
                if child is not None:
                    node.children[str(key)] = child
        elif isinstance(obj, list):
            node = cls.indexed()
            for index, item in enumerate(obj):
                child = cls.from_json(item)
                if child is not None:
                    node.children[index] = child
        else:
            node = cls.of(obj)

        return node

    def to_json(self) -> Any:
        """
        Convert to a new JSON-compatible object. Holes in indexed containers
        are filled with `None`{l=python}, unless at most half of the indexes
        up to the highest one are present: such sparse containers are
        encoded as objects keyed by index, as the server encodes them.
        """
        if self.kind is ValueKind.KEYED:
            return {
                str(key): child.to_json()
                for key, child in self.children.items()
            }

        if self.kind is ValueKind.INDEXED:
            size = max(self.children) + 1 if self.children else 0

            if self.children and len(self.children) * 2 <= size:
                return {
                    str(index): self.children[index].to_json()
                    for index in sorted(self.children)
                }

            items: list[Any] = [None] * size
            for index, child in self.children.items():
                assert isinstance(index, int)
                items[index] = child.to_json()
            return items

        return self.scalar

    @property
    def is_container(self) -> bool:
        return self.kind is not ValueKind.SCALAR

    @property
    def is_empty(self) -> bool:
        return self.is_container and not self.children

    def get(self, key: Key) -> Value | None:
        """
        Get child by key, or `None`{l=python} if this isn't a container or
        the child doesn't exist.
        """
        if not self.is_container:
            return None
        return self.children.get(self._lookup_key(key))

    def set(self, key: Key, value: Value):
        """
        Set child. Writing a key which is not an integer index into an
        indexed container converts it to a keyed container.
        """
        assert self.is_container, f"Attempt to set key {key} of scalar"

        if self.kind is ValueKind.INDEXED:
            index = _as_index(key)
            if index is None:
                self._promote()
            else:
                self.children[index] = value
                return

        self.children[str(key)] = value

    def remove(self, key: Key):
        if self.is_container:
            self.children.pop(self._lookup_key(key), None)

    def walk(self, keys: Iterable[Key]) -> Value | None:
        """
        Descend through the given keys, returning `None`{l=python} as soon
        as a key is missing.
        """
        node: Value | None = self
        for key in keys:
            if node is None:
                break
            node = node.get(key)
        return node

    def prune(self) -> bool:
        """
        Recursively remove empty containers beneath this node, bottom-up.

        :returns: Whether this node is an empty container after pruning
        """
        if not self.is_container:
            return False

        for key, child in list(self.children.items()):
            if child.prune():
                del self.children[key]

        return not self.children

    def _lookup_key(self, key: Key) -> Key:
        if self.kind is ValueKind.INDEXED:
            index = _as_index(key)
            # a non-index key can't match anything in an indexed container
            return index if index is not None else str(key)
        return str(key)

    def _promote(self):
        self.kind = ValueKind.KEYED
        self.children = {
            str(key): child for key, child in self.children.items()
        }


def _as_index(key: Key) -> int | None:
    """
    Interpret key as an index into an indexed container.
    """
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key if key >= 0 else None
    if key.isdigit() and key.isascii():
        return int(key)
    return None
