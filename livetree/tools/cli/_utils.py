"""
Utilities specific to CLI functionality.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from click import BadParameter, Parameter
from rich.console import Console
from rich.logging import RichHandler
from typer import Context, Exit, Typer

from ...core import LivetreeError, Session

if TYPE_CHECKING:
    from .main import RootContext


console = Console()
"""
Console for data output and logs.
"""


def _create_logger() -> logging.Logger:
    """
    Route the package logger to the console, with timestamps but without
    source locations.
    """
    handler = RichHandler(
        console=console, rich_tracebacks=True, show_path=False
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    cli_logger = logging.getLogger("livetree")
    cli_logger.setLevel(logging.INFO)
    cli_logger.addHandler(handler)
    cli_logger.propagate = False

    return cli_logger


logger = _create_logger()


class MainTyper(Typer):
    """
    Typer app with preconfigured settings.
    """

    def __init__(self, name: str, *, help: str):
        return super().__init__(
            name=name,
            help=help,
            rich_markup_mode="markdown",
            no_args_is_help=True,
            add_completion=False,
        )


def get_root_context(ctx: Context) -> RootContext:
    from .main import RootContext

    root_context = ctx.obj
    assert isinstance(root_context, RootContext)
    return root_context


def lookup_param(ctx: Context, name: str) -> Parameter:
    """
    Lookup param by name.
    """
    param = next((p for p in ctx.command.params if p.name == name), None)
    assert param, f"Could not find param with name: {name}"
    return param


def parse_value(ctx: Context, value: str, *, param_name: str = "value") -> Any:
    """
    Parse JSON value passed on the command line.
    """
    try:
        return json.loads(value)
    except ValueError as e:
        raise BadParameter(
            f"invalid JSON '{value}': {e}",
            ctx=ctx,
            param=lookup_param(ctx, param_name),
        )


def run_request(
    ctx: Context, request: Callable[[Session], Awaitable[Any]]
) -> Any:
    """
    Create a session and run request in a new event loop, exiting upon
    error.
    """
    session = get_root_context(ctx).create_session()

    async def run() -> Any:
        return await request(session)

    try:
        return asyncio.run(run())
    except LivetreeError as e:
        logger.error(f"Request failed: {e}")
        raise Exit(code=1)


def print_value(value: Any):
    console.print_json(data=value)
