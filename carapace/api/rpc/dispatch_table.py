"""Method-name to handler lookup, built once at startup and passed to the listener.

Handlers are called as ``handler(request_id, params)`` and return an
``RpcResult`` (``(True, payload, None)`` or ``(False, None, error)``), either
directly or as an awaitable. They may also raise ``RpcError``. Handlers for
different connections can run concurrently, so any state a handler keeps must
be safe to share between connection tasks.
"""

from __future__ import annotations

import inspect
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterator, Mapping

from carapace.api.rpc.codec import Response
from carapace.api.rpc.error_boundary import RpcResult, rpc_error_result, unknown_method_result
from carapace.utils.exceptions import RpcError


RpcHandler = Callable[[Any, Any], Awaitable[RpcResult] | RpcResult]


class DispatchTable:
    """Read-only mapping of method names to handlers."""

    def __init__(self, handlers: Mapping[str, RpcHandler]):
        for name, handler in handlers.items():
            if not isinstance(name, str) or not name:
                raise ValueError(f"method name must be a non-empty string, got {name!r}")
            if not callable(handler):
                raise TypeError(f"handler for {name!r} is not callable")
        self._handlers: Mapping[str, RpcHandler] = MappingProxyType(dict(handlers))

    def __contains__(self, method: object) -> bool:
        return method in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def __iter__(self) -> Iterator[str]:
        return iter(self._handlers)

    def methods(self) -> list[str]:
        return sorted(self._handlers)

    async def dispatch(self, method: str, params: Any, *, request_id: Any = None) -> RpcResult:
        """Run the handler for method; unknown names yield METHOD_NOT_FOUND."""
        handler = self._handlers.get(method)
        if handler is None:
            return unknown_method_result(method=method)
        try:
            outcome = handler(request_id, params)
            result = await outcome if inspect.isawaitable(outcome) else outcome
        except RpcError as exc:
            return rpc_error_result(method=method, exc=exc)
        ok, payload, error = result
        if not ok and error is None:
            raise ValueError(f"handler for {method!r} reported failure without an error payload")
        return ok, payload, error


def response_from_result(request_id: Any, result: RpcResult) -> Response:
    """Turn a dispatch outcome into the response answering request_id."""
    ok, payload, error = result
    if ok:
        return Response.success(request_id, payload)
    return Response.failure(request_id, error["code"], error["message"], error.get("data"))
