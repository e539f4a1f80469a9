import asyncio
import json
import logging
from pathlib import Path

from pytest import FixtureRequest, MonkeyPatch, fixture
from typer.testing import CliRunner

from livetree import Response
from livetree.tools.cli.main import app
from livetree.tools.config import Config, InstanceConfig

HOST = "https://test-db.example.com"
TOKEN = "test-token"

DIVIDER = "=" * 40


class LogHandler(logging.Handler):
    """
    Handler to create a list of logs for testcases to access for verification.
    """

    test_logs: list[str]

    def __init__(self):
        super().__init__()
        self.test_logs = []

    def emit(self, record: logging.LogRecord):
        self.test_logs.append(record.getMessage())


# create and register handler
log_handler = LogHandler()
logging.getLogger("livetree").addHandler(log_handler)

runner = CliRunner()


@fixture(autouse=True)
def cli_env(monkeypatch: MonkeyPatch, tmp_path: Path, transport):
    """
    Run commands from an empty folder using the fake transport.
    """
    for name in [
        "LIVETREE_HOST",
        "LIVETREE_TOKEN",
        "LIVETREE_NAMESPACE",
        "LIVETREE_INSTANCE",
        "LIVETREE_CONFIG_FILE",
    ]:
        monkeypatch.delenv(name, raising=False)

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(
        "livetree.core.session.RequestsTransport", lambda **kwargs: transport
    )
    log_handler.test_logs.clear()


def test_get(request: FixtureRequest, transport):
    transport.queue(200, '{"a": {"b": [1, 2]}}')

    stdout = _run(request, ["--host", HOST, "--token", TOKEN, "get", "/x"])

    assert json.loads(stdout) == {"a": {"b": [1, 2]}}
    assert transport.requests[0].method == "GET"
    assert transport.requests[0].url.startswith(f"{HOST}/x.json?")
    assert f"auth={TOKEN}" in transport.requests[0].url


def test_get_shallow(request: FixtureRequest, transport):
    transport.queue(200, '{"a": true}')

    _run(request, ["--host", HOST, "get", "--shallow"])

    assert "shallow=true" in transport.requests[0].url


def test_write_commands(request: FixtureRequest, transport):
    transport.queue(200, '{"x": 1}')
    transport.queue(200, '{"y": 2}')
    transport.queue(200, '{"name": "-Nabc"}')
    transport.queue(200, "null")

    _run(request, ["--host", HOST, "set", "/a", '{"x": 1}'])
    _run(request, ["--host", HOST, "update", "/a", '{"y": 2}'])
    _run(request, ["--host", HOST, "push", "/a/list", '"item"'])
    _run(request, ["--host", HOST, "remove", "/a"])

    assert [(r.method, r.body) for r in transport.requests] == [
        ("PUT", '{"x": 1}'),
        ("PATCH", '{"y": 2}'),
        ("POST", '"item"'),
        ("DELETE", None),
    ]

    assert log_handler.test_logs == [
        "Wrote '/a'",
        "Updated '/a'",
        "Pushed '/a/list/-Nabc'",
        "Removed '/a'",
    ]


def test_invalid_value(request: FixtureRequest, transport):
    _run(request, ["--host", HOST, "set", "/a", "{invalid"], exit_code=2)

    # update requires an object
    _run(request, ["--host", HOST, "update", "/a", "[1, 2]"], exit_code=2)

    assert transport.requests == []


def test_request_error(request: FixtureRequest, transport):
    transport.queue(401, '{"error": "Permission denied"}')

    _run(request, ["--host", HOST, "get", "/a"], exit_code=1)

    assert any("Permission denied" in log for log in log_handler.test_logs)


def test_missing_host(request: FixtureRequest):
    _run(request, ["get", "/a"], exit_code=2)
    _run(request, ["--host", "not-a-url", "get", "/a"], exit_code=2)


def test_config(request: FixtureRequest, transport, tmp_path: Path):
    config_path = tmp_path / "test-config.yaml"

    # generate a config file dynamically with connection info
    model = Config(
        default_instance="test-instance",
        instances={
            "test-instance": InstanceConfig(host=HOST, token=TOKEN),
            "other-instance": InstanceConfig(
                host="https://other.example.com",
                token="other-token",
                namespace="other-ns",
            ),
        },
    )
    model.dump_yaml(config_path)

    transport.queue(200, '{"a": true, "b": true}')
    _run(
        request,
        [
            "--instance",
            "other-instance",
            "--config-file",
            config_path,
            "check",
        ],
    )

    url = transport.requests[-1].url
    assert url.startswith("https://other.example.com/.json?")
    assert "ns=other-ns" in url
    assert "auth=other-token" in url
    assert "shallow=true" in url
    assert log_handler.test_logs[-1] == (
        "Connected to 'https://other.example.com': 2 top-level keys"
    )

    # default instance used without --instance
    _run(request, ["--config-file", config_path, "check"])
    assert transport.requests[-1].url.startswith(f"{HOST}/.json?")

    _run(
        request,
        ["--instance", "missing", "--config-file", config_path, "check"],
        exit_code=2,
    )

    _run(
        request,
        [
            "--instance",
            "test-instance",
            "--config-file",
            tmp_path / "missing.yaml",
            "check",
        ],
        exit_code=2,
    )


def test_config_default_file(
    request: FixtureRequest, transport, tmp_path: Path
):
    # livetree.yaml in current folder is used if no host given
    Config(instances={"local": InstanceConfig(host=HOST)}).dump_yaml(
        tmp_path / "livetree.yaml"
    )

    _run(request, ["--instance", "local", "get"])
    assert transport.requests[-1].url.startswith(f"{HOST}/.json")


def test_watch(request: FixtureRequest, monkeypatch: MonkeyPatch, transport):
    open_stream = transport.open_stream

    def open_and_send(url, headers, on_data, on_exit):
        handle = open_stream(url, headers, on_data, on_exit)
        data = json.dumps({"path": "/", "data": {"a": 1, "b": {"c": 2}}})
        asyncio.get_running_loop().call_soon(
            on_data, f"event: put\ndata: {data}\n\n"
        )
        return handle

    monkeypatch.setattr(transport, "open_stream", open_and_send)

    stdout = _run(
        request,
        [
            "--host",
            HOST,
            "watch",
            "/users",
            "--listen",
            "/b",
            "--duration",
            "0.1",
        ],
    )

    assert transport.stream.url.startswith(f"{HOST}/users.json?")
    assert transport.stream.cancelled

    assert "/b" in stdout
    assert '"c": 2' in stdout
    assert '"a": 1' not in stdout
    assert f"Streaming '/users' from '{HOST}'" in log_handler.test_logs


def test_watch_error(
    request: FixtureRequest, monkeypatch: MonkeyPatch, transport
):
    open_stream = transport.open_stream

    def open_and_fail(url, headers, on_data, on_exit):
        handle = open_stream(url, headers, on_data, on_exit)
        asyncio.get_running_loop().call_soon(
            on_exit, Response(403, '{"error": "Permission denied"}')
        )
        return handle

    monkeypatch.setattr(transport, "open_stream", open_and_fail)

    _run(request, ["--host", HOST, "watch", "/"], exit_code=1)

    assert any("status=403" in log for log in log_handler.test_logs)


def _run(
    request: FixtureRequest,
    cmd: list[str | Path],
    exit_code: int = 0,
) -> str:
    """
    Run command and verify exit code.

    :returns: Stdout of command
    """

    cmd_norm = _normalize_cmd(cmd)
    print_stdout = bool(request.config.getoption("--cli-stdout"))

    if print_stdout:
        print(DIVIDER)
        print(f"$ livetree {_get_shell_cmd(cmd_norm)}")

    # invoke command
    result = runner.invoke(app, args=cmd_norm, catch_exceptions=False)

    if print_stdout:
        print(result.stdout.strip())
        print(DIVIDER)

    assert result.exit_code == exit_code
    return result.stdout


def _normalize_cmd(cmd: list[str | Path]) -> list[str]:
    return [str(c) for c in cmd]


def _get_shell_cmd(cmd: list[str]) -> str:
    """
    Get command in the form it could be run in a shell, including required
    quotes.
    """
    return " ".join(f'"{c}"' if " " in c else c for c in cmd)
