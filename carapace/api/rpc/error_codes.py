"""Error code blocks shared by the daemon and the client.

Protocol codes (parse / validate / route failures) and application codes
(failures reported by an operation's own policy) live in disjoint blocks so a
caller can tell "the gateway rejected this message" from "the operation
failed".
"""

from __future__ import annotations

from enum import IntEnum


PROTOCOL_VERSION = "2.0"

# Inclusive bounds.
PROTOCOL_ERROR_BLOCK = (-32768, -32100)
APPLICATION_ERROR_BLOCK = (-32099, -32000)


class RpcErrorCode(IntEnum):
    """Standard JSON-RPC 2.0 protocol-level codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


class AppErrorCode(IntEnum):
    """Reserved for policy handlers; the core never raises these itself."""

    NOT_IN_ALLOWLIST = -32001
    RATE_LIMITED = -32002
    CONTENT_BLOCKED = -32003
    CHANNEL_UNAVAILABLE = -32004
    SEND_FAILED = -32005


def _in_block(code: int, block: tuple[int, int]) -> bool:
    low, high = block
    return low <= int(code) <= high


def is_protocol_error(code: int) -> bool:
    """Whether code belongs to the protocol block."""
    return _in_block(code, PROTOCOL_ERROR_BLOCK)


def is_application_error(code: int) -> bool:
    """Whether code belongs to the application block."""
    return _in_block(code, APPLICATION_ERROR_BLOCK)


def check_error_code_blocks() -> None:
    """Raise AssertionError if the two code blocks or their members overlap."""
    proto_low, proto_high = PROTOCOL_ERROR_BLOCK
    app_low, app_high = APPLICATION_ERROR_BLOCK
    if not (proto_high < app_low or app_high < proto_low):
        raise AssertionError(f"error code blocks overlap: {PROTOCOL_ERROR_BLOCK} vs {APPLICATION_ERROR_BLOCK}")
    for code in RpcErrorCode:
        if not is_protocol_error(code):
            raise AssertionError(f"{code.name}={int(code)} outside protocol block {PROTOCOL_ERROR_BLOCK}")
    for code in AppErrorCode:
        if not is_application_error(code):
            raise AssertionError(f"{code.name}={int(code)} outside application block {APPLICATION_ERROR_BLOCK}")


check_error_code_blocks()
