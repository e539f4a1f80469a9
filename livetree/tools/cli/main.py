"""
Entry point of `livetree` CLI.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import dotenv
from click import BadParameter, Choice, MissingParameter
from pydantic import ValidationError
from rich.markup import escape
from typer import Argument, Context, Exit, Option

from ...core import AuthMode, Response, Session
from ..config import Config, InstanceConfig
from ._utils import (
    MainTyper,
    console,
    get_root_context,
    logger,
    lookup_param,
    parse_value,
    print_value,
    run_request,
)

dotenv.load_dotenv()

app = MainTyper(
    "livetree",
    help="livetree CLI Toolkit",
)


@app.callback()
def main(
    ctx: Context,
    host: str
    | None = Option(
        None,
        help="Server URL, e.g. https://my-db.firebaseio.com",
        envvar="LIVETREE_HOST",
    ),
    token: str
    | None = Option(
        None,
        help="Access token or database secret",
        envvar="LIVETREE_TOKEN",
    ),
    namespace: str
    | None = Option(
        None,
        help="Namespace, derived from host if not given",
        envvar="LIVETREE_NAMESPACE",
    ),
    auth_mode: str = Option(
        AuthMode.SECRET.value,
        "--auth-mode",
        help="Query parameter used to pass the token",
        show_choices=True,
        click_type=Choice([mode.value for mode in AuthMode]),
    ),
    instance_name: str
    | None = Option(
        None,
        "--instance",
        help="Instance name as configured in .yaml",
        envvar="LIVETREE_INSTANCE",
    ),
    config_file: Path = Option(
        "livetree.yaml",
        help=".yaml file containing instance info, only applicable with --instance",
        envvar="LIVETREE_CONFIG_FILE",
        dir_okay=False,
    ),
    debug: bool = Option(
        False,
        "--debug",
        help="Enable diagnostic logging",
    ),
):
    if debug:
        logger.setLevel("DEBUG")

    if instance_name or (not host and config_file.is_file()):
        root_context = RootContext.from_config(
            ctx=ctx,
            instance_name=instance_name,
            config_file=config_file,
            debug=debug,
        )
    else:
        if not host:
            raise MissingParameter(
                message="either --host or --instance must be provided",
                ctx=ctx,
                param_hint=["host", "instance"],
                param_type="option",
            )

        try:
            instance = InstanceConfig(
                host=host,
                token=token,
                namespace=namespace,
                auth_mode=AuthMode(auth_mode),
            )
            instance.get_session_config()
        except ValidationError as e:
            raise BadParameter(
                f"invalid connection settings: {e}",
                ctx=ctx,
                param=lookup_param(ctx, "host"),
            )

        root_context = RootContext(
            ctx=ctx, instance=instance, from_file=False, debug=debug
        )

    ctx.obj = root_context


@app.command()
def check(ctx: Context):
    """
    Check connection to server
    """
    host = get_root_context(ctx).instance.host

    data = run_request(ctx, lambda s: s.read("/", {"shallow": True}))
    count = len(data) if isinstance(data, dict) else 0

    logger.info(f"Connected to '{host}': {count} top-level keys")


@app.command()
def get(
    ctx: Context,
    path: str = Argument("/", help="Path to read"),
    shallow: bool = Option(
        False,
        "--shallow",
        help="Only get keys of immediate children",
    ),
):
    """
    Print value at path
    """
    params = {"shallow": True} if shallow else None
    print_value(run_request(ctx, lambda s: s.read(path, params)))


@app.command("set")
def set_(
    ctx: Context,
    path: str = Argument(help="Path to write"),
    value: str = Argument(help="JSON value"),
):
    """
    Replace value at path
    """
    data = parse_value(ctx, value)
    run_request(ctx, lambda s: s.write(path, data))
    logger.info(f"Wrote '{path}'")


@app.command()
def update(
    ctx: Context,
    path: str = Argument(help="Path to update"),
    value: str = Argument(help="JSON object of children to merge"),
):
    """
    Merge children into value at path
    """
    data = parse_value(ctx, value)

    if not isinstance(data, dict):
        raise BadParameter(
            "must be a JSON object",
            ctx=ctx,
            param=lookup_param(ctx, "value"),
        )

    run_request(ctx, lambda s: s.update(path, data))
    logger.info(f"Updated '{path}'")


@app.command()
def push(
    ctx: Context,
    path: str = Argument(help="Path of parent"),
    value: str = Argument(help="JSON value"),
):
    """
    Add child with generated key
    """
    data = parse_value(ctx, value)
    result = run_request(ctx, lambda s: s.push(path, data))
    name = result.get("name") if isinstance(result, dict) else None
    logger.info(f"Pushed '{path}/{name}'")


@app.command()
def remove(
    ctx: Context,
    path: str = Argument(help="Path to delete"),
):
    """
    Delete value at path
    """
    run_request(ctx, lambda s: s.remove(path))
    logger.info(f"Removed '{path}'")


@app.command()
def watch(
    ctx: Context,
    path: str = Argument("/", help="Path to stream"),
    listen: list[str]
    | None = Option(
        None,
        "--listen",
        help="Path relative to streamed path to print changes for; may be repeated",
    ),
    duration: float
    | None = Option(
        None,
        help="Seconds to stream before exiting; stream until interrupted if not given",
        min=0,
    ),
):
    """
    Stream changes at path, printing what listeners observe
    """
    session = get_root_context(ctx).create_session()

    try:
        error = asyncio.run(_watch(session, path, listen or ["/"], duration))
    except KeyboardInterrupt:
        logger.info("Stopped")
        return

    if error is not None:
        logger.error(
            f"Stream failed with status={error.status_code}: {error.text}"
        )
        raise Exit(code=1)


async def _watch(
    session: Session,
    path: str,
    listen: list[str],
    duration: float | None,
) -> Response | None:
    """
    Stream until duration elapses or an error occurs.

    :returns: Response which ended the stream, if any
    """
    failed = asyncio.Event()
    errors: list[Response] = []

    def on_change(changed_path: str, value: Any):
        console.print(f"[bold cyan]{escape(changed_path)}[/bold cyan]")
        print_value(value)

    def on_error(response: Response):
        errors.append(response)
        failed.set()

    for listen_path in listen:
        session.on(listen_path, on_change)

    async with session:
        session.stream(path, on_error=on_error)
        logger.info(f"Streaming '{path}' from '{session.host}'")

        try:
            await asyncio.wait_for(failed.wait(), timeout=duration)
        except TimeoutError:
            pass

    return errors[0] if errors else None


def run():
    app()


@dataclass(kw_only=True)
class RootContext:
    ctx: Context
    instance: InstanceConfig
    from_file: bool
    debug: bool = False

    @classmethod
    def from_config(
        cls,
        *,
        ctx: Context,
        instance_name: str | None,
        config_file: Path,
        debug: bool = False,
    ) -> RootContext:
        if not config_file.is_file():
            raise BadParameter(
                message=f"file does not exist: {config_file}",
                ctx=ctx,
                param=lookup_param(ctx, "config_file"),
            )

        try:
            config = Config.load_yaml(config_file)
        except (ValueError, ValidationError) as e:
            raise BadParameter(
                f"failed to load config file '{config_file}': {e}",
                ctx=ctx,
                param=lookup_param(ctx, "config_file"),
            )

        instance = config.get_instance(instance_name)
        if not instance:
            raise BadParameter(
                f"instance '{instance_name or '(default)'}' not found in '{config_file}'",
                ctx=ctx,
                param=lookup_param(ctx, "instance_name"),
            )

        return RootContext(
            ctx=ctx, instance=instance, from_file=True, debug=debug
        )

    def create_session(self) -> Session:
        try:
            return self.instance.create_session(logger=logger, debug=self.debug)
        except ValidationError as e:
            logger.error(f"Invalid instance configuration: {e}")
            raise Exit(code=1)


if __name__ == "__main__":
    app()
