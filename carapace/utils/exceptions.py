"""
Exception hierarchy and error handling utilities for carapace.

Provides:
- Base exception with a stable kind string and fault category
- Server-side protocol errors (parse, validation, handler-raised RPC errors)
- Client-side errors that keep transport, protocol and operation faults apart
- Safe error message formatting (no secret leak into logs or responses)
"""

from __future__ import annotations

import asyncio
import json
import re
from enum import Enum
from typing import Any

from carapace.api.rpc.error_codes import is_application_error, is_protocol_error


class ErrorCategory(Enum):
    """Fault categories, one per layer of the gateway."""
    TRANSPORT = "transport"
    FRAMING = "framing"
    STRUCTURAL = "structural"
    DISPATCH = "dispatch"
    CORRELATION = "correlation"
    REMOTE = "remote"
    CONFIG = "config"


class CarapaceError(Exception):
    """Base exception for all carapace errors."""

    def __init__(
        self,
        message: str,
        kind: str = "UNKNOWN_ERROR",
        category: ErrorCategory = ErrorCategory.DISPATCH,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.category = category
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.kind,
            "message": self.message,
            "category": self.category.value,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"


# ---------------------------------------------------------------------------
# Server side
# ---------------------------------------------------------------------------


class MessageParseError(CarapaceError):
    """A line could not be decoded into a protocol message."""

    def __init__(self, message: str, raw: str | bytes = ""):
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        super().__init__(
            message,
            kind="PARSE_ERROR",
            category=ErrorCategory.FRAMING,
            details={"raw": raw},
        )
        self.raw = raw


class ValidationFailure(Enum):
    """Structural rule a request broke; values are the human-readable reason."""
    BAD_VERSION = 'missing or invalid "version" field (must be "2.0")'
    MISSING_ID = 'missing "id" field'
    BAD_ID = 'invalid "id" field (must be a string or number)'
    MISSING_METHOD = 'missing "method" field'


class RequestValidationError(CarapaceError):
    """A decoded request does not meet the protocol's structural rules."""

    def __init__(self, reason: ValidationFailure):
        super().__init__(
            reason.value,
            kind=reason.name,
            category=ErrorCategory.STRUCTURAL,
            details={"reason": reason.name},
        )
        self.reason = reason


class RpcError(CarapaceError):
    """Error raised by a handler to answer with an explicit code and message."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(
            message,
            kind="RPC_ERROR",
            category=ErrorCategory.DISPATCH,
            details={"code": code, "data": data},
        )
        self.code = code
        self.data = data

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


# ---------------------------------------------------------------------------
# Client side
# ---------------------------------------------------------------------------


class ClientError(CarapaceError):
    """Base class for everything GatewayClient can raise."""


class ConnectionFailedError(ClientError):
    """The daemon socket could not be reached."""

    def __init__(self, socket_path: str, reason: str):
        super().__init__(
            f"Cannot connect to daemon at {socket_path}: {reason}. Is the daemon running?",
            kind="CONNECTION_FAILED",
            category=ErrorCategory.TRANSPORT,
            details={"socket_path": socket_path},
        )
        self.socket_path = socket_path


class ConnectionClosedError(ClientError):
    """The daemon closed the connection before a response arrived."""

    def __init__(self, message: str = "Daemon closed the connection unexpectedly"):
        super().__init__(message, kind="CONNECTION_CLOSED", category=ErrorCategory.TRANSPORT)


class TransportError(ClientError):
    """Local I/O failure while talking to the daemon."""

    def __init__(self, message: str):
        super().__init__(f"I/O error: {message}", kind="TRANSPORT_ERROR", category=ErrorCategory.TRANSPORT)


class ResponseParseError(ClientError):
    """The daemon sent a line that is not a valid response."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(
            f"invalid response from daemon: {message}",
            kind="RESPONSE_PARSE_ERROR",
            category=ErrorCategory.FRAMING,
            details={"raw": raw},
        )
        self.raw = raw


class IdMismatchError(ClientError):
    """Response id does not answer the request just sent; the connection is desynchronized."""

    def __init__(self, expected: int, got: Any):
        super().__init__(
            f"response ID mismatch: expected {expected}, got {json.dumps(got)}",
            kind="ID_MISMATCH",
            category=ErrorCategory.CORRELATION,
            details={"expected": expected, "got": got},
        )
        self.expected = expected
        self.got = got


class GatewayError(ClientError):
    """The daemon answered with an error object."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(
            f"gateway error {code}: {message}",
            kind="GATEWAY_ERROR",
            category=ErrorCategory.REMOTE,
            details={"code": code, "data": data},
        )
        self.code = code
        self.remote_message = message
        self.data = data

    @property
    def is_protocol_error(self) -> bool:
        """True when the daemon rejected the request at the protocol layer."""
        return is_protocol_error(self.code)

    @property
    def is_application_error(self) -> bool:
        """True when the operation itself reported a domain failure."""
        return is_application_error(self.code)


_SENSITIVE_PATTERNS = [
    re.compile(r"(api[_-]?key|token|secret|password|passwd|auth)[=:]\s*['\"]?([^\s'\"]+)['\"]?", re.IGNORECASE),
    re.compile(r"bearer\s+[a-zA-Z0-9\-._~+/]+=*", re.IGNORECASE),
    re.compile(r"sk-[a-zA-Z0-9]{20,}"),
    re.compile(r"xox[baprs]-[a-zA-Z0-9\-]+"),
    re.compile(r"[a-zA-Z0-9]{40,}"),
]


def sanitize_error_message(message: str, replacement: str = "[REDACTED]") -> str:
    """Remove credentials and long opaque tokens from a message."""
    sanitized = message
    for pattern in _SENSITIVE_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


def truncate_for_log(text: str | bytes, limit: int = 200) -> str:
    """Sanitized, single-line, length-bounded copy of untrusted input."""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    flat = sanitize_error_message(text.strip()).replace("\n", "\\n").replace("\r", "\\r")
    if len(flat) <= limit:
        return flat
    return f"{flat[:limit]}... ({len(flat)} chars)"


def classify_exception(exc: BaseException) -> tuple[str, ErrorCategory]:
    """
    Classify an exception into (kind, category) for logging and error data.

    Returns:
        Tuple of (kind, category)
    """
    if isinstance(exc, CarapaceError):
        return exc.kind, exc.category

    if isinstance(exc, asyncio.TimeoutError):
        return "TIMEOUT", ErrorCategory.DISPATCH

    if isinstance(exc, (ConnectionError, BrokenPipeError)):
        return "CONNECTION_ERROR", ErrorCategory.TRANSPORT

    if isinstance(exc, (json.JSONDecodeError, UnicodeDecodeError)):
        return "JSON_PARSE_ERROR", ErrorCategory.FRAMING

    if isinstance(exc, FileNotFoundError):
        return "FILE_NOT_FOUND", ErrorCategory.DISPATCH

    if isinstance(exc, PermissionError):
        return "PERMISSION_DENIED", ErrorCategory.DISPATCH

    if isinstance(exc, OSError):
        return "OS_ERROR", ErrorCategory.TRANSPORT

    if isinstance(exc, (KeyError, TypeError, ValueError)):
        return "INVALID_VALUE", ErrorCategory.DISPATCH

    return "INTERNAL_ERROR", ErrorCategory.DISPATCH
