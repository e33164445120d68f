"""Common RPC error-boundary helpers for server dispatch."""

from __future__ import annotations

from typing import Any

from loguru import logger

from carapace.api.rpc.error_codes import RpcErrorCode
from carapace.utils.exceptions import (
    RpcError,
    classify_exception,
    sanitize_error_message,
)


RpcResult = tuple[bool, Any | None, dict[str, Any] | None]


def rpc_error(code: int, message: str, data: Any = None) -> dict[str, Any]:
    """Build an error payload for an RpcResult."""
    payload: dict[str, Any] = {"code": int(code), "message": message}
    if data is not None:
        payload["data"] = data
    return payload


def unknown_method_result(*, method: str) -> RpcResult:
    """Build standardized unknown-method response."""
    logger.warning("RPC unknown method: {}", method)
    return False, None, rpc_error(RpcErrorCode.METHOD_NOT_FOUND, f"Unknown method: {method}")


def rpc_error_result(*, method: str, exc: RpcError) -> RpcResult:
    """Map an RpcError raised by a handler to its error payload."""
    logger.warning("RPC method {} failed with {}: {}", method, exc.code, sanitize_error_message(exc.message))
    return False, None, rpc_error(exc.code, exc.message, exc.data)


def unhandled_exception_result(*, method: str, exc: Exception) -> RpcResult:
    """Map unexpected exceptions to standardized INTERNAL_ERROR responses."""
    kind, category = classify_exception(exc)
    sanitized = sanitize_error_message(str(exc)) or type(exc).__name__
    logger.opt(exception=exc).error("RPC method {} failed with [{}]: {}", method, kind, sanitized)
    details = {"error_kind": kind, "category": category.value}
    return False, None, rpc_error(RpcErrorCode.INTERNAL_ERROR, f"Internal error: {sanitized}", details)
