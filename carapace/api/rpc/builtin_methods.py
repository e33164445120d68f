"""Built-in RPC methods: ping, echo, whoami, execute.

These are the replaceable surface behind the dispatch table. ``whoami`` and
``execute`` run as the daemon's OS user, which is what the socket boundary is
for: a caller in another account gets work done as this one.
"""

from __future__ import annotations

import asyncio
import os
import pwd
from typing import Any

from loguru import logger

from carapace.api.rpc.dispatch_table import DispatchTable, RpcHandler
from carapace.api.rpc.error_boundary import RpcResult, rpc_error
from carapace.api.rpc.error_codes import RpcErrorCode
from carapace.utils.exceptions import sanitize_error_message


def _params_dict(params: Any) -> dict[str, Any]:
    return params if isinstance(params, dict) else {}


def handle_ping(request_id: Any, params: Any) -> RpcResult:
    """Liveness check."""
    return True, {"pong": True}, None


def handle_echo(request_id: Any, params: Any) -> RpcResult:
    """Return params.message unchanged."""
    message = _params_dict(params).get("message")
    return True, {"echo": message if isinstance(message, str) else ""}, None


def _daemon_user() -> str:
    for var in ("USER", "LOGNAME"):
        value = os.environ.get(var)
        if value:
            return value
    try:
        return pwd.getpwuid(os.getuid()).pw_name
    except KeyError:
        return "unknown"


def handle_whoami(request_id: Any, params: Any) -> RpcResult:
    """Report the OS user the daemon runs as."""
    return True, {"user": _daemon_user(), "uid": os.getuid()}, None


def make_execute_handler(timeout_seconds: float | None = None) -> RpcHandler:
    """
    Build the ``execute`` handler.

    Params:
        command: executable to run (no shell)
        args: optional list of string arguments; non-string items are ignored

    Returns ``{stdout, stderr, exit_code}``. Only the calling connection waits
    for the child. With ``timeout_seconds`` set, a child that outlives it is
    killed and the call fails with INTERNAL_ERROR.
    """

    async def handle_execute(request_id: Any, params: Any) -> RpcResult:
        p = _params_dict(params)
        command = p.get("command")
        if not isinstance(command, str):
            return False, None, rpc_error(RpcErrorCode.INVALID_PARAMS, 'Missing required param: "command"')
        raw_args = p.get("args")
        args = [a for a in raw_args if isinstance(a, str)] if isinstance(raw_args, list) else []

        logger.info("Executing command={} args={} id={}", command, args, request_id)
        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as exc:
            reason = sanitize_error_message(str(exc))
            logger.warning("Failed to execute {}: {}", command, reason)
            return False, None, rpc_error(RpcErrorCode.INTERNAL_ERROR, f'Failed to execute "{command}": {reason}')

        try:
            if timeout_seconds is None:
                stdout, stderr = await process.communicate()
            else:
                stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            raise
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("Command {} timed out after {}s", command, timeout_seconds)
            return False, None, rpc_error(
                RpcErrorCode.INTERNAL_ERROR,
                f'Command "{command}" timed out after {timeout_seconds} seconds',
                {"timeout_seconds": timeout_seconds},
            )

        returncode = process.returncode
        exit_code = returncode if returncode is not None and returncode >= 0 else -1
        return True, {
            "stdout": stdout.decode("utf-8", errors="replace"),
            "stderr": stderr.decode("utf-8", errors="replace"),
            "exit_code": exit_code,
        }, None

    return handle_execute


def build_default_dispatch_table(*, execute_timeout: float | None = None) -> DispatchTable:
    """Dispatch table with every built-in method."""
    return DispatchTable(
        {
            "ping": handle_ping,
            "echo": handle_echo,
            "whoami": handle_whoami,
            "execute": make_execute_handler(execute_timeout),
        }
    )
