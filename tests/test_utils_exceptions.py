import asyncio
import json

from carapace.utils.exceptions import (
    CarapaceError,
    ConnectionFailedError,
    ErrorCategory,
    GatewayError,
    IdMismatchError,
    MessageParseError,
    RequestValidationError,
    ValidationFailure,
    classify_exception,
    sanitize_error_message,
    truncate_for_log,
)


def test_carapace_error_to_dict_and_str():
    err = CarapaceError("went wrong", kind="SOMETHING", category=ErrorCategory.CONFIG, details={"k": 1})
    assert str(err) == "[SOMETHING] went wrong"
    assert err.to_dict() == {"error": "SOMETHING", "message": "went wrong", "category": "config", "details": {"k": 1}}


def test_message_parse_error_keeps_raw_as_text():
    err = MessageParseError("bad", raw=b"\xffabc")
    assert err.kind == "PARSE_ERROR"
    assert err.category is ErrorCategory.FRAMING
    assert err.raw.endswith("abc")


def test_request_validation_error_reason_text():
    err = RequestValidationError(ValidationFailure.MISSING_ID)
    assert err.reason is ValidationFailure.MISSING_ID
    assert err.message == 'missing "id" field'
    assert err.category is ErrorCategory.STRUCTURAL


def test_client_errors_are_categorised():
    assert ConnectionFailedError("/x.sock", "No such file or directory").category is ErrorCategory.TRANSPORT
    assert IdMismatchError(1, 2).category is ErrorCategory.CORRELATION
    assert GatewayError(-32601, "Unknown method: x").category is ErrorCategory.REMOTE


def test_id_mismatch_message_shows_both_ids():
    assert IdMismatchError(3, "3").message == 'response ID mismatch: expected 3, got "3"'


def test_gateway_error_block_membership():
    assert GatewayError(-32700, "Parse error").is_protocol_error
    assert GatewayError(-32005, "send failed").is_application_error
    unrelated = GatewayError(7, "odd")
    assert not unrelated.is_protocol_error and not unrelated.is_application_error


def test_sanitize_error_message_redacts_credentials():
    text = sanitize_error_message("password=hunter2 and Bearer abc.def")
    assert "hunter2" not in text
    assert "abc.def" not in text


def test_truncate_for_log_is_single_line_and_bounded():
    flat = truncate_for_log("a\nb" + "x " * 250)
    assert "\n" not in flat
    assert flat.startswith("a\\nb")
    assert flat.endswith("(503 chars)")


def test_classify_exception():
    assert classify_exception(MessageParseError("x")) == ("PARSE_ERROR", ErrorCategory.FRAMING)
    assert classify_exception(asyncio.TimeoutError()) == ("TIMEOUT", ErrorCategory.DISPATCH)
    assert classify_exception(BrokenPipeError()) == ("CONNECTION_ERROR", ErrorCategory.TRANSPORT)
    assert classify_exception(json.JSONDecodeError("x", "doc", 0)) == ("JSON_PARSE_ERROR", ErrorCategory.FRAMING)
    assert classify_exception(PermissionError()) == ("PERMISSION_DENIED", ErrorCategory.DISPATCH)
    assert classify_exception(KeyError("k")) == ("INVALID_VALUE", ErrorCategory.DISPATCH)
    assert classify_exception(RuntimeError()) == ("INTERNAL_ERROR", ErrorCategory.DISPATCH)
