"""RPC request guard: structural validation before dispatch."""

from __future__ import annotations

from typing import Any

from carapace.api.rpc.codec import Request, Response
from carapace.api.rpc.error_codes import PROTOCOL_VERSION, RpcErrorCode
from carapace.utils.exceptions import RequestValidationError, ValidationFailure


def _is_scalar_id(value: Any) -> bool:
    return isinstance(value, (str, int, float))


def validate_request(request: Request) -> None:
    """Check version, id and method in that order; the first failure is raised."""
    if request.version != PROTOCOL_VERSION:
        raise RequestValidationError(ValidationFailure.BAD_VERSION)
    if request.id is None:
        raise RequestValidationError(ValidationFailure.MISSING_ID)
    if not _is_scalar_id(request.id):
        raise RequestValidationError(ValidationFailure.BAD_ID)
    if not isinstance(request.method, str) or not request.method:
        raise RequestValidationError(ValidationFailure.MISSING_METHOD)


def invalid_request_response(request: Request, exc: RequestValidationError) -> Response:
    """INVALID_REQUEST response echoing the parsed id; a non-scalar id is answered with null."""
    return Response.failure(
        request.id if _is_scalar_id(request.id) else None,
        RpcErrorCode.INVALID_REQUEST,
        f"Invalid request: {exc.message}",
    )
