"""
livetree: client for a remote JSON tree with a live local mirror.
"""

from pyrollup import rollup

from . import core
from .core import *  # noqa

__all__ = rollup(core)

__canonical_children__ = [
    "core",
]
