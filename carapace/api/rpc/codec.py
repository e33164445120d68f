"""Wire codec: one JSON message per newline-terminated line.

Requests and responses are pydantic models. ``encode_*`` produce a single
compact line ending in ``\\n``; ``decode_*`` accept ``str`` or ``bytes`` and
raise ``MessageParseError`` (carrying the offending text) instead of letting
JSON or UTF-8 errors escape.
"""

from __future__ import annotations

import json
from typing import Any

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from carapace.api.rpc.error_codes import PROTOCOL_VERSION, RpcErrorCode
from carapace.utils.exceptions import MessageParseError, sanitize_error_message


class Request(BaseModel):
    """A request as read off the wire; structural checks happen in request_guard."""

    model_config = ConfigDict(populate_by_name=True)

    version: str | None = Field(default=None, validation_alias=AliasChoices("version", "jsonrpc"))
    id: Any = None
    method: str | None = None
    params: Any = Field(default_factory=dict)

    @field_validator("version", "method", mode="before")
    @classmethod
    def _absent_unless_string(cls, value: Any) -> Any:
        # A non-string value is reported by validation as a missing field.
        return value if isinstance(value, str) else None

    def to_wire(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "id": self.id,
            "method": self.method,
            "params": self.params,
        }


class ErrorObject(BaseModel):
    """The ``error`` member of a failed response."""

    code: int
    message: str
    data: Any = None

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            payload["data"] = self.data
        return payload


class Response(BaseModel):
    """A response carrying exactly one of ``result`` or ``error``."""

    model_config = ConfigDict(populate_by_name=True)

    version: str = Field(default=PROTOCOL_VERSION, validation_alias=AliasChoices("version", "jsonrpc"))
    id: Any = None
    result: Any = None
    error: ErrorObject | None = None

    @model_validator(mode="after")
    def _result_xor_error(self) -> "Response":
        has_result = "result" in self.model_fields_set
        if has_result == (self.error is not None):
            raise ValueError("response must carry exactly one of result or error")
        return self

    @classmethod
    def success(cls, request_id: Any, result: Any) -> "Response":
        return cls(version=PROTOCOL_VERSION, id=request_id, result=result)

    @classmethod
    def failure(cls, request_id: Any, code: int, message: str, data: Any = None) -> "Response":
        return cls(
            version=PROTOCOL_VERSION,
            id=request_id,
            error=ErrorObject(code=int(code), message=message, data=data),
        )

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"version": self.version, "id": self.id}
        if self.error is not None:
            payload["error"] = self.error.to_wire()
        else:
            payload["result"] = self.result
        return payload


def _dumps(payload: dict[str, Any]) -> str:
    # ASCII-escaped output keeps every message on one line and valid UTF-8.
    return json.dumps(payload, separators=(",", ":"), allow_nan=False)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


def _load_object(line: str | bytes) -> dict[str, Any]:
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MessageParseError(f"invalid UTF-8: {exc}", raw=line) from exc
    text = line.strip()
    try:
        payload = json.loads(text, parse_constant=_reject_constant)
    except (ValueError, RecursionError) as exc:
        raise MessageParseError(str(exc), raw=text) from exc
    if not isinstance(payload, dict):
        raise MessageParseError(f"expected a JSON object, got {type(payload).__name__}", raw=text)
    return payload


def encode_request(request: Request) -> str:
    """Serialize a request to one line. Raises TypeError/ValueError for unserializable params."""
    return _dumps(request.to_wire()) + "\n"


def decode_request(line: str | bytes) -> Request:
    """Parse one line into a Request; missing ``params`` becomes ``{}``."""
    payload = _load_object(line)
    try:
        return Request.model_validate(payload)
    except ValidationError as exc:
        raise MessageParseError(str(exc), raw=json.dumps(payload)) from exc


def _fallback_id(request_id: Any) -> Any:
    return request_id if isinstance(request_id, (str, int, float, bool)) else None


def encode_response(response: Response) -> str:
    """Serialize a response; never raises, degrading to an INTERNAL_ERROR line."""
    try:
        return _dumps(response.to_wire()) + "\n"
    except (TypeError, ValueError, RecursionError) as exc:
        message = sanitize_error_message(str(exc))
        logger.error("Response serialization failed id={}: {}", response.id, message)
        fallback = Response.failure(
            _fallback_id(response.id),
            RpcErrorCode.INTERNAL_ERROR,
            f"Serialization failed: {message}",
        )
        try:
            return _dumps(fallback.to_wire()) + "\n"
        except (TypeError, ValueError):
            return _dumps(Response.failure(None, RpcErrorCode.INTERNAL_ERROR, "Serialization failed").to_wire()) + "\n"


def decode_response(line: str | bytes) -> Response:
    """Parse one line into a Response, enforcing result xor error."""
    payload = _load_object(line)
    try:
        return Response.model_validate(payload)
    except ValidationError as exc:
        raise MessageParseError(str(exc), raw=json.dumps(payload)) from exc
