"""
This module implements the client session: one-shot requests, and the
stream mirrored into a local cache with path-scoped listeners.
"""

from pyrollup import rollup

from . import (
    auth,
    backoff,
    cache,
    dispatcher,
    events,
    exceptions,
    frames,
    listeners,
    paths,
    session,
    stream,
    transport,
    value,
)
from .auth import *  # noqa
from .backoff import *  # noqa
from .cache import *  # noqa
from .dispatcher import *  # noqa
from .events import *  # noqa
from .exceptions import *  # noqa
from .frames import *  # noqa
from .listeners import *  # noqa
from .paths import *  # noqa
from .session import *  # noqa
from .stream import *  # noqa
from .transport import *  # noqa
from .value import *  # noqa

__all__ = rollup(
    session,
    stream,
    dispatcher,
    cache,
    listeners,
    frames,
    events,
    value,
    paths,
    backoff,
    auth,
    transport,
    exceptions,
)

__canonical_children__ = [
    "session",
    "stream",
    "dispatcher",
    "cache",
    "listeners",
    "frames",
    "events",
    "value",
    "paths",
    "backoff",
    "auth",
    "transport",
    "exceptions",
]
