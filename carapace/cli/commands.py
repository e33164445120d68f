"""CLI commands for carapace.

One entry point: ``serve`` runs the daemon, ``call`` and ``selftest`` talk to
it through GatewayClient, ``config`` inspects and writes the config file.
"""

import asyncio
import getpass
import json
from pathlib import Path
from typing import Any, Callable

import typer
from rich.console import Console

from carapace import __logo__, __version__
from carapace.api.rpc.error_codes import RpcErrorCode
from carapace.cli.shared.logging_utils import configure_logging
from carapace.config.loader import get_config_path, load_config, resolve_socket_path, save_config
from carapace.config.schema import Config
from carapace.gateway.client import GatewayClient
from carapace.utils.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectionFailedError,
    GatewayError,
    IdMismatchError,
    ResponseParseError,
    TransportError,
)

app = typer.Typer(
    name="carapace",
    help=f"{__logo__} carapace - cross-user JSON-RPC gateway over a Unix socket",
    no_args_is_help=True,
)

console = Console()

# Exit codes for `call`, so scripts can tell the three failure classes apart.
EXIT_OPERATION_FAILED = 1
EXIT_UNREACHABLE = 2
EXIT_PROTOCOL_FAULT = 3


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} carapace v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """carapace - cross-user JSON-RPC gateway."""
    pass


def _load_config_or_exit(config_path: str | None) -> Config:
    path = Path(config_path).expanduser() if config_path else None
    try:
        return load_config(path)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e


def _exit_code_for(exc: ClientError) -> int:
    if isinstance(exc, (ConnectionFailedError, ConnectionClosedError, TransportError)):
        return EXIT_UNREACHABLE
    if isinstance(exc, (ResponseParseError, IdMismatchError)):
        return EXIT_PROTOCOL_FAULT
    if isinstance(exc, GatewayError) and exc.is_protocol_error:
        return EXIT_PROTOCOL_FAULT
    return EXIT_OPERATION_FAILED


# ============================================================================
# Daemon
# ============================================================================


@app.command()
def serve(
    socket: str = typer.Option(None, "--socket", "-s", help="Socket path (overrides CARAPACE_SOCKET_PATH and config)"),
    config_path: str = typer.Option(None, "--config", "-c", help="Config file (default ~/.carapace/config.json)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Run the gateway daemon until SIGINT/SIGTERM."""
    from carapace.gateway.daemon import run_gateway

    config = _load_config_or_exit(config_path)
    level = "DEBUG" if verbose else config.logging.level
    log_path = configure_logging(level, log_file=config.logging.file or None)

    socket_path = resolve_socket_path(socket, config)
    console.print(f"{__logo__} Starting carapace gateway on {socket_path}...")
    if log_path:
        console.print(f"[dim]Logs: {log_path}[/dim]")

    try:
        asyncio.run(run_gateway(config, socket_path=str(socket_path)))
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")
    except (OSError, LookupError) as e:
        console.print(f"[red]Cannot serve on {socket_path}: {e}[/red]")
        raise typer.Exit(1) from e


# ============================================================================
# Client
# ============================================================================


@app.command()
def call(
    method: str = typer.Argument(..., help="Method name, e.g. ping"),
    params: str = typer.Option("{}", "--params", "-p", help="Params as a JSON value"),
    socket: str = typer.Option(None, "--socket", "-s", help="Socket path"),
    config_path: str = typer.Option(None, "--config", "-c", help="Config file"),
):
    """Send one request and print its result as JSON."""
    try:
        parsed_params = json.loads(params)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"not valid JSON: {e}", param_hint="--params") from e

    config = _load_config_or_exit(config_path)
    socket_path = resolve_socket_path(socket, config)
    try:
        with GatewayClient.connect(socket_path, timeout=config.client.timeout_seconds) as client:
            result = client.call(method, parsed_params)
    except ClientError as e:
        console.print(f"[red]✗[/red] {e.message}")
        raise typer.Exit(_exit_code_for(e)) from e
    typer.echo(json.dumps(result, indent=2, ensure_ascii=False))


def _check_ping(client: GatewayClient) -> tuple[bool, str]:
    result = client.call("ping", {})
    if isinstance(result, dict) and result.get("pong") is True:
        return True, "pong: true"
    return False, f"unexpected: {result!r}"


_ECHO_MESSAGE = "Hello from the other side!"


def _check_echo(client: GatewayClient) -> tuple[bool, str]:
    result = client.call("echo", {"message": _ECHO_MESSAGE})
    if isinstance(result, dict) and result.get("echo") == _ECHO_MESSAGE:
        return True, "echoed correctly"
    return False, f"unexpected: {result!r}"


def _check_whoami(client: GatewayClient) -> tuple[bool, str]:
    result = client.call("whoami", {})
    if not isinstance(result, dict):
        return False, f"unexpected: {result!r}"
    daemon_user = result.get("user", "?")
    detail = f"user: {daemon_user}, uid: {result.get('uid')}"
    try:
        my_user = getpass.getuser()
    except (KeyError, OSError):
        my_user = "unknown"
    if daemon_user != my_user:
        detail += f"\n   ↳ Isolation verified: daemon runs as \"{daemon_user}\", you are \"{my_user}\""
    else:
        detail += "\n   ↳ Note: daemon user matches yours; run it as the carapace user for isolation"
    return True, detail


_EXECUTE_TEXT = "cross-user execution works"


def _check_execute(client: GatewayClient) -> tuple[bool, str]:
    result = client.call("execute", {"command": "echo", "args": [_EXECUTE_TEXT]})
    if not isinstance(result, dict):
        return False, f"unexpected: {result!r}"
    stdout = str(result.get("stdout", "")).strip()
    exit_code = result.get("exit_code")
    detail = f"exit: {exit_code}, stdout: \"{stdout}\""
    return exit_code == 0 and stdout == _EXECUTE_TEXT, detail


def _check_unknown_method(client: GatewayClient) -> tuple[bool, str]:
    try:
        result = client.call("nonexistent.method", {})
    except GatewayError as e:
        if e.code == RpcErrorCode.METHOD_NOT_FOUND:
            return True, f"code: {e.code}, msg: \"{e.remote_message}\""
        return False, f"wrong error code: {e.code}"
    return False, f"expected error, got: {result!r}"


SELFTEST_CHECKS: list[tuple[str, Callable[[GatewayClient], tuple[bool, str]]]] = [
    ("ping", _check_ping),
    ("echo", _check_echo),
    ("whoami", _check_whoami),
    ("execute", _check_execute),
    ("error case", _check_unknown_method),
]


@app.command()
def selftest(
    socket: str = typer.Option(None, "--socket", "-s", help="Socket path"),
    config_path: str = typer.Option(None, "--config", "-c", help="Config file"),
):
    """Exercise every built-in method end to end against a running daemon."""
    config = _load_config_or_exit(config_path)
    socket_path = resolve_socket_path(socket, config)
    console.print(f"{__logo__} carapace selftest v{__version__}")
    try:
        client = GatewayClient.connect(socket_path, timeout=config.client.timeout_seconds)
    except ConnectionFailedError as e:
        console.print(f"[red]✗[/red] {e.message}")
        console.print("[dim]Start it with: carapace serve --socket <path>[/dim]")
        raise typer.Exit(1) from e

    passed = failed = 0
    with client:
        for number, (name, check) in enumerate(SELFTEST_CHECKS, start=1):
            try:
                ok, detail = check(client)
            except ClientError as e:
                ok, detail = False, e.message
            if ok:
                passed += 1
                console.print(f"{number}. {name} [green]✓[/green] {detail}", highlight=False)
            else:
                failed += 1
                console.print(f"{number}. {name} [red]✗[/red] {detail}", highlight=False)

    console.print(f"\nResults: {passed} passed, {failed} failed, {passed + failed} total")
    if failed:
        raise typer.Exit(1)
    console.print("[green]All checks passed.[/green]")


# ============================================================================
# Config
# ============================================================================

config_app = typer.Typer(help="Inspect or create the config file")
app.add_typer(config_app, name="config")


@config_app.command("show")
def config_show(
    config_path: str = typer.Option(None, "--config", "-c", help="Config file"),
):
    """Print the effective configuration (file, environment, defaults)."""
    config = _load_config_or_exit(config_path)
    data: dict[str, Any] = config.model_dump()
    data["gateway"]["socket_mode"] = f"{config.gateway.socket_mode:o}"
    data["gateway"]["socket_path"] = str(resolve_socket_path(None, config))
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False))


@config_app.command("init")
def config_init(
    config_path: str = typer.Option(None, "--config", "-c", help="Config file"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
):
    """Write the default configuration to the config file."""
    path = Path(config_path).expanduser() if config_path else get_config_path()
    if path.exists() and not force:
        console.print(f"[yellow]Config already exists at {path}[/yellow] (use --force to overwrite)")
        raise typer.Exit(1)
    save_config(Config(), path)
    console.print(f"[green]✓[/green] Created config at {path}")
