"""Per-connection read -> process -> write loop.

One ``ConnectionSession`` owns one accepted connection. Requests on a
connection are handled strictly in order; every fault that concerns a single
line becomes a response and the loop goes on, while I/O faults end only this
session.
"""

from __future__ import annotations

import asyncio
import contextlib
from enum import Enum

from loguru import logger

from carapace.api.rpc.codec import Response, decode_request, encode_response
from carapace.api.rpc.dispatch_table import DispatchTable, response_from_result
from carapace.api.rpc.error_boundary import unhandled_exception_result
from carapace.api.rpc.error_codes import RpcErrorCode
from carapace.api.rpc.request_guard import invalid_request_response, validate_request
from carapace.utils.exceptions import MessageParseError, RequestValidationError, truncate_for_log


class SessionState(Enum):
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    CLOSED = "closed"


class ConnectionSession:
    """Serve newline-delimited requests on one stream until the peer goes away."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        dispatch_table: DispatchTable,
        *,
        connection_id: str = "conn",
    ):
        self._reader = reader
        self._writer = writer
        self._dispatch_table = dispatch_table
        self.connection_id = connection_id
        self.state = SessionState.READING
        self.requests_handled = 0

    async def run(self) -> None:
        """Loop until end-of-stream or an I/O fault, then close the connection."""
        logger.info("Client connected conn={}", self.connection_id)
        try:
            while True:
                self.state = SessionState.READING
                try:
                    line = await self._reader.readline()
                except ValueError as exc:
                    # Stream limit exceeded: the rest of the frame is unrecoverable.
                    logger.warning("Oversized message conn={}: {}", self.connection_id, exc)
                    await self._write(
                        Response.failure(None, RpcErrorCode.PARSE_ERROR, "Parse error: message too large")
                    )
                    break
                except (ConnectionError, OSError) as exc:
                    logger.warning("Read error conn={}: {}", self.connection_id, exc)
                    break

                if not line:
                    logger.info("Client disconnected conn={}", self.connection_id)
                    break
                if not line.strip():
                    continue

                self.state = SessionState.PROCESSING
                response = await self.process_line(line)
                self.requests_handled += 1

                self.state = SessionState.WRITING
                if not await self._write(response):
                    break
        finally:
            await self._close()

    async def process_line(self, line: bytes | str) -> Response:
        """Decode, validate and dispatch one non-blank line into its response."""
        try:
            request = decode_request(line)
        except MessageParseError as exc:
            logger.warning(
                "RPC parse error conn={}: {} input={}",
                self.connection_id,
                exc.message,
                truncate_for_log(exc.raw),
            )
            return Response.failure(None, RpcErrorCode.PARSE_ERROR, f"Parse error: {exc.message}")

        try:
            validate_request(request)
        except RequestValidationError as exc:
            logger.warning(
                "RPC invalid request conn={} id={} code={}: {}",
                self.connection_id,
                request.id,
                int(RpcErrorCode.INVALID_REQUEST),
                exc.message,
            )
            return invalid_request_response(request, exc)

        method = request.method
        logger.debug("RPC request conn={} id={} method={}", self.connection_id, request.id, method)
        try:
            result = await self._dispatch_table.dispatch(method, request.params, request_id=request.id)
            response = response_from_result(request.id, result)
        except Exception as exc:
            response = response_from_result(request.id, unhandled_exception_result(method=method, exc=exc))

        if response.error is not None:
            logger.info(
                "RPC error conn={} id={} method={} code={}: {}",
                self.connection_id,
                request.id,
                method,
                response.error.code,
                truncate_for_log(response.error.message),
            )
        return response

    async def _write(self, response: Response) -> bool:
        """Write one response line and flush; False when the peer is gone."""
        data = encode_response(response).encode("utf-8")
        try:
            self._writer.write(data)
            await self._writer.drain()
        except (ConnectionError, OSError) as exc:
            logger.warning("Write error conn={}: {}", self.connection_id, exc)
            return False
        return True

    async def _close(self) -> None:
        self.state = SessionState.CLOSED
        self._writer.close()
        with contextlib.suppress(ConnectionError, OSError):
            await self._writer.wait_closed()
