"""Synchronous gateway client.

One persistent connection, one outstanding request at a time. Every call
allocates the next integer id and insists the response carries it back;
anything else means the stream is out of step and the client refuses to
guess.
"""

from __future__ import annotations

import os
import socket
from pathlib import Path
from typing import Any

from carapace.api.rpc.codec import Request, decode_response, encode_request
from carapace.api.rpc.error_codes import PROTOCOL_VERSION
from carapace.config.loader import ENV_SOCKET_PATH
from carapace.config.schema import DEFAULT_SOCKET_PATH
from carapace.utils.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectionFailedError,
    ErrorCategory,
    GatewayError,
    IdMismatchError,
    MessageParseError,
    ResponseParseError,
    TransportError,
)


class GatewayClient:
    """Blocking JSON-RPC client for the carapace daemon socket."""

    def __init__(self, sock: socket.socket, socket_path: str | Path = ""):
        self._sock = sock
        self._reader = sock.makefile("rb")
        self._socket_path = str(socket_path)
        self._next_id = 1

    @classmethod
    def connect(cls, socket_path: str | Path, *, timeout: float | None = None) -> "GatewayClient":
        """Open a connection; ``timeout`` bounds connect and every later read/write."""
        path = str(socket_path)
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.settimeout(timeout)
            sock.connect(path)
        except OSError as exc:
            sock.close()
            raise ConnectionFailedError(path, exc.strerror or str(exc)) from exc
        return cls(sock, path)

    @classmethod
    def connect_default(cls, *, timeout: float | None = None) -> "GatewayClient":
        """Connect to CARAPACE_SOCKET_PATH, or the default socket when unset."""
        path = os.environ.get(ENV_SOCKET_PATH, "").strip() or DEFAULT_SOCKET_PATH
        return cls.connect(path, timeout=timeout)

    @property
    def next_id(self) -> int:
        return self._next_id

    @property
    def socket_path(self) -> str:
        return self._socket_path

    def call(self, method: str, params: Any = None) -> Any:
        """Send one request and block for its response; returns ``result``."""
        request_id = self._next_id
        self._next_id += 1

        request = Request(
            version=PROTOCOL_VERSION,
            id=request_id,
            method=method,
            params=params if params is not None else {},
        )
        try:
            line = encode_request(request)
        except (TypeError, ValueError) as exc:
            raise ClientError(
                f"cannot encode params for {method}: {exc}",
                kind="ENCODE_ERROR",
                category=ErrorCategory.FRAMING,
            ) from exc

        try:
            self._sock.sendall(line.encode("utf-8"))
            raw = self._reader.readline()
        except OSError as exc:  # includes socket timeouts
            raise TransportError(str(exc) or type(exc).__name__) from exc

        if not raw:
            raise ConnectionClosedError()

        try:
            response = decode_response(raw)
        except MessageParseError as exc:
            raise ResponseParseError(exc.message, raw=raw.decode("utf-8", errors="replace").rstrip("\n")) from exc

        # bool and float ids compare equal to ints, so check the type too.
        if type(response.id) is not int or response.id != request_id:
            raise IdMismatchError(request_id, response.id)

        if response.error is not None:
            raise GatewayError(response.error.code, response.error.message, response.error.data)
        return response.result

    def close(self) -> None:
        try:
            self._reader.close()
        finally:
            self._sock.close()

    def __enter__(self) -> "GatewayClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
