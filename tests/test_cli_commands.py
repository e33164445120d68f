import json
import sys

import pytest
from loguru import logger
from typer.testing import CliRunner

from carapace import __version__
from carapace.api.rpc.builtin_methods import handle_ping
from carapace.api.rpc.dispatch_table import DispatchTable
from carapace.api.rpc.error_boundary import rpc_error
from carapace.api.rpc.error_codes import AppErrorCode
from carapace.cli.commands import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    monkeypatch.delenv("CARAPACE_SOCKET_PATH", raising=False)
    monkeypatch.setenv("CARAPACE_CONFIG", str(tmp_path / "config.json"))


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_call_prints_result_json(running_gateway):
    result = runner.invoke(
        app, ["call", "echo", "--params", '{"message": "hi"}', "--socket", str(running_gateway.socket_path)]
    )
    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == {"echo": "hi"}


def test_call_unknown_method_is_protocol_fault(running_gateway):
    result = runner.invoke(app, ["call", "nonexistent.method", "--socket", str(running_gateway.socket_path)])
    assert result.exit_code == 3
    assert "Unknown method" in result.output


def test_call_unreachable_daemon(socket_dir):
    result = runner.invoke(app, ["call", "ping", "--socket", str(socket_dir / "absent.sock")])
    assert result.exit_code == 2
    assert "Cannot connect" in result.output


def test_call_operation_failure(start_gateway):
    def _blocked(request_id, params):
        return False, None, rpc_error(AppErrorCode.CONTENT_BLOCKED, "blocked")

    gateway = start_gateway(DispatchTable({"ping": handle_ping, "send": _blocked}))
    result = runner.invoke(app, ["call", "send", "--socket", str(gateway.socket_path)])
    assert result.exit_code == 1
    assert "blocked" in result.output


def test_call_rejects_invalid_params_json(socket_dir):
    result = runner.invoke(app, ["call", "ping", "--params", "{oops", "--socket", str(socket_dir / "x.sock")])
    assert result.exit_code == 2


def test_call_uses_env_socket(monkeypatch, running_gateway):
    monkeypatch.setenv("CARAPACE_SOCKET_PATH", str(running_gateway.socket_path))
    result = runner.invoke(app, ["call", "ping"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == {"pong": True}


def test_selftest_passes_against_running_gateway(running_gateway):
    result = runner.invoke(app, ["selftest", "--socket", str(running_gateway.socket_path)])
    assert result.exit_code == 0, result.output
    assert "5 passed, 0 failed" in result.output
    assert "Isolation" in result.output or "Note" in result.output


def test_selftest_fails_when_checks_fail(start_gateway):
    gateway = start_gateway(DispatchTable({"ping": handle_ping}))
    result = runner.invoke(app, ["selftest", "--socket", str(gateway.socket_path)])
    assert result.exit_code == 1
    assert "2 passed, 3 failed" in result.output


def test_selftest_unreachable(socket_dir):
    result = runner.invoke(app, ["selftest", "--socket", str(socket_dir / "absent.sock")])
    assert result.exit_code == 1
    assert "Cannot connect" in result.output


def test_config_init_then_show(tmp_path):
    path = tmp_path / "config.json"
    result = runner.invoke(app, ["config", "init", "--config", str(path)])
    assert result.exit_code == 0, result.output
    assert path.exists()

    again = runner.invoke(app, ["config", "init", "--config", str(path)])
    assert again.exit_code == 1

    shown = runner.invoke(app, ["config", "show", "--config", str(path)])
    assert shown.exit_code == 0, shown.output
    data = json.loads(shown.output)
    assert data["gateway"]["socket_mode"] == "770"
    assert data["gateway"]["socket_path"] == "/var/run/carapace/gateway.sock"


def test_config_show_reports_invalid_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{broken", encoding="utf-8")
    result = runner.invoke(app, ["config", "show", "--config", str(path)])
    assert result.exit_code == 1
    assert "Failed to load config" in result.output


def test_serve_reports_unknown_socket_group(monkeypatch, socket_dir):
    monkeypatch.setenv("CARAPACE_GATEWAY__SOCKET_GROUP", "carapace-no-such-group-x")
    socket_path = socket_dir / "gw.sock"
    try:
        result = runner.invoke(app, ["serve", "--socket", str(socket_path)])
    finally:
        logger.remove()
        logger.add(sys.stderr)
    assert result.exit_code == 1
    assert "Cannot serve" in result.output
    assert not socket_path.exists()
