"""Unix domain socket listener.

Owns the socket file (stale cleanup, parent directory, permission bits,
group ownership) and runs the accept loop, handing every accepted
connection to its own ``ConnectionSession`` task.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import shutil
import socket
from pathlib import Path

from loguru import logger

from carapace.api.rpc.dispatch_table import DispatchTable
from carapace.gateway.session import ConnectionSession


DEFAULT_SOCKET_MODE = 0o770
DEFAULT_MAX_MESSAGE_BYTES = 1_048_576
DEFAULT_BACKLOG = 128
# Pause after a failed accept (e.g. EMFILE) so the loop does not spin.
ACCEPT_ERROR_PAUSE_SECONDS = 0.1


class GatewayListener:
    """Accept connections on a Unix socket and serve each one concurrently."""

    def __init__(
        self,
        socket_path: str | Path,
        dispatch_table: DispatchTable,
        *,
        socket_mode: int = DEFAULT_SOCKET_MODE,
        socket_group: str | None = None,
        max_message_bytes: int = DEFAULT_MAX_MESSAGE_BYTES,
        backlog: int = DEFAULT_BACKLOG,
    ):
        self._socket_path = Path(socket_path)
        self._dispatch_table = dispatch_table
        self._socket_mode = socket_mode
        self._socket_group = socket_group or None
        self._max_message_bytes = max_message_bytes
        self._backlog = backlog
        self._sock: socket.socket | None = None
        self._sessions: set[asyncio.Task[None]] = set()
        self._accept_task: asyncio.Task[None] | None = None
        self._next_connection = 0
        self._closing = False

    @property
    def socket_path(self) -> Path:
        return self._socket_path

    @property
    def active_connections(self) -> int:
        return len(self._sessions)

    @property
    def is_serving(self) -> bool:
        return self._sock is not None and not self._closing

    async def start(self) -> None:
        """Prepare the socket path, bind, set permissions and listen."""
        path = self._socket_path
        if not path.parent.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            logger.info("Created socket directory {}", path.parent)
        if path.exists() or path.is_symlink():
            logger.info("Removing stale socket {}", path)
            path.unlink()

        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        bound = False
        try:
            # Owner-only until chmod; the bind would otherwise follow the process umask.
            old_umask = os.umask(0o077)
            try:
                sock.bind(str(path))
            finally:
                os.umask(old_umask)
            bound = True
            os.chmod(path, self._socket_mode)
            if self._socket_group:
                shutil.chown(path, group=self._socket_group)
            sock.listen(self._backlog)
            sock.setblocking(False)
        except BaseException:
            sock.close()
            if bound:
                with contextlib.suppress(FileNotFoundError):
                    path.unlink()
            raise
        self._sock = sock
        self._closing = False
        logger.info(
            "Gateway listening on {} mode={:o} group={}",
            path,
            self._socket_mode,
            self._socket_group or "-",
        )

    async def serve_forever(self) -> None:
        """Accept until stop(); accept faults are logged and the loop continues."""
        if self._sock is None:
            raise RuntimeError("listener is not started")
        loop = asyncio.get_running_loop()
        self._accept_task = asyncio.current_task()
        try:
            while not self._closing:
                try:
                    conn, _ = await loop.sock_accept(self._sock)
                except OSError as exc:
                    if self._closing:
                        break
                    logger.error("Accept error on {}: {}", self._socket_path, exc)
                    await asyncio.sleep(ACCEPT_ERROR_PAUSE_SECONDS)
                    continue
                self._spawn_session(conn)
        finally:
            self._accept_task = None

    async def serve(self) -> None:
        """start() then serve_forever()."""
        await self.start()
        await self.serve_forever()

    def _spawn_session(self, conn: socket.socket) -> None:
        self._next_connection += 1
        connection_id = f"conn-{self._next_connection}"
        task = asyncio.create_task(self._run_session(conn, connection_id), name=f"carapace-{connection_id}")
        self._sessions.add(task)
        task.add_done_callback(self._on_session_done)

    async def _run_session(self, conn: socket.socket, connection_id: str) -> None:
        try:
            reader, writer = await asyncio.open_unix_connection(sock=conn, limit=self._max_message_bytes)
        except OSError as exc:
            logger.warning("Could not open stream for {}: {}", connection_id, exc)
            conn.close()
            return
        session = ConnectionSession(reader, writer, self._dispatch_table, connection_id=connection_id)
        await session.run()

    def _on_session_done(self, task: asyncio.Task[None]) -> None:
        """Log exceptions from session tasks before discarding."""
        self._sessions.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).warning("Session task {} failed: {}", task.get_name(), exc)

    async def stop(self) -> None:
        """Stop accepting, cancel live sessions, remove the socket file."""
        self._closing = True
        if self._accept_task is not None and self._accept_task is not asyncio.current_task():
            self._accept_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._accept_task

        sessions = list(self._sessions)
        for task in sessions:
            task.cancel()
        if sessions:
            await asyncio.gather(*sessions, return_exceptions=True)
        self._sessions.clear()

        if self._sock is not None:
            self._sock.close()
            self._sock = None
            with contextlib.suppress(FileNotFoundError):
                self._socket_path.unlink()
            logger.info("Gateway stopped, removed {}", self._socket_path)
