"""Daemon entry point: configuration in, listening gateway out."""

from __future__ import annotations

import asyncio
import signal

from loguru import logger

from carapace.api.rpc.builtin_methods import build_default_dispatch_table
from carapace.api.rpc.dispatch_table import DispatchTable
from carapace.config.loader import resolve_socket_path
from carapace.config.schema import Config
from carapace.gateway.listener import GatewayListener


def build_listener(
    config: Config,
    dispatch_table: DispatchTable | None = None,
    *,
    socket_path: str | None = None,
) -> GatewayListener:
    """Listener for ``config``; ``socket_path`` (the --socket flag) wins over env and config."""
    gw = config.gateway
    table = dispatch_table or build_default_dispatch_table(execute_timeout=gw.execute_timeout_seconds)
    return GatewayListener(
        resolve_socket_path(socket_path, config),
        table,
        socket_mode=gw.socket_mode,
        socket_group=gw.socket_group or None,
        max_message_bytes=gw.max_message_bytes,
    )


async def run_gateway(
    config: Config,
    dispatch_table: DispatchTable | None = None,
    *,
    socket_path: str | None = None,
    stop_event: asyncio.Event | None = None,
) -> None:
    """
    Serve until SIGINT/SIGTERM (or ``stop_event``), then shut down cleanly.

    Startup failures (bind, chmod, chown) propagate to the caller.
    """
    listener = build_listener(config, dispatch_table, socket_path=socket_path)
    await listener.start()
    stop = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            # Not the main thread; the caller owns shutdown via stop_event.
            pass

    serve_task = asyncio.create_task(listener.serve_forever(), name="carapace-accept")
    stop_task = asyncio.create_task(stop.wait(), name="carapace-stop")
    try:
        done, _ = await asyncio.wait({serve_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if serve_task in done:
            # serve_forever only returns on stop(); surface any crash.
            serve_task.result()
        else:
            logger.info("Shutdown requested")
    finally:
        stop_task.cancel()
        await listener.stop()
        serve_task.cancel()
        await asyncio.gather(serve_task, stop_task, return_exceptions=True)
        for sig in installed:
            loop.remove_signal_handler(sig)
