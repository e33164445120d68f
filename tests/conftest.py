"""Pytest hooks and fixtures."""

import asyncio
import shutil
import tempfile
import threading
from pathlib import Path

import pytest

from carapace.api.rpc.builtin_methods import build_default_dispatch_table
from carapace.gateway.listener import GatewayListener


@pytest.fixture
def socket_dir():
    """Short temporary directory; AF_UNIX paths are limited to ~100 bytes."""
    path = Path(tempfile.mkdtemp(prefix="cg-"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def socket_path(socket_dir):
    return socket_dir / "gw.sock"


class ThreadedGateway:
    """Listener on its own event loop in a background thread, for blocking clients."""

    def __init__(self, socket_path: Path, dispatch_table=None):
        self.socket_path = socket_path
        self.dispatch_table = dispatch_table or build_default_dispatch_table()
        self._ready = threading.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop: asyncio.Event | None = None
        self._error: BaseException | None = None
        self._thread = threading.Thread(target=self._run, name="test-gateway", daemon=True)

    def _run(self) -> None:
        try:
            asyncio.run(self._main())
        except BaseException as exc:  # surfaced in start()
            self._error = exc
            self._ready.set()

    async def _main(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        listener = GatewayListener(self.socket_path, self.dispatch_table)
        await listener.start()
        serve_task = asyncio.create_task(listener.serve_forever())
        self._ready.set()
        try:
            await self._stop.wait()
        finally:
            await listener.stop()
            serve_task.cancel()
            await asyncio.gather(serve_task, return_exceptions=True)

    def start(self) -> "ThreadedGateway":
        self._thread.start()
        if not self._ready.wait(timeout=10):
            raise RuntimeError("gateway did not start")
        if self._error is not None:
            raise self._error
        return self

    def stop(self) -> None:
        if self._loop is not None and self._stop is not None and self._thread.is_alive():
            self._loop.call_soon_threadsafe(self._stop.set)
        self._thread.join(timeout=10)


@pytest.fixture
def start_gateway(socket_path):
    """Factory starting a ThreadedGateway on socket_path, stopped at teardown."""
    started: list[ThreadedGateway] = []

    def _start(dispatch_table=None) -> ThreadedGateway:
        gateway = ThreadedGateway(socket_path, dispatch_table).start()
        started.append(gateway)
        return gateway

    yield _start
    for gateway in started:
        gateway.stop()


@pytest.fixture
def running_gateway(start_gateway):
    return start_gateway()
