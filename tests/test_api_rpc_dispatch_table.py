import pytest

from carapace.api.rpc.dispatch_table import DispatchTable, response_from_result
from carapace.api.rpc.error_boundary import rpc_error
from carapace.api.rpc.error_codes import AppErrorCode, RpcErrorCode
from carapace.utils.exceptions import RpcError


def _sync_handler(request_id, params):
    return True, {"id": request_id, "params": params}, None


async def _async_handler(request_id, params):
    return True, {"async": True}, None


def test_dispatch_table_is_read_only():
    table = DispatchTable({"a": _sync_handler, "b": _async_handler})
    assert len(table) == 2
    assert "a" in table and "missing" not in table
    assert table.methods() == ["a", "b"]
    with pytest.raises(TypeError):
        table._handlers["c"] = _sync_handler


def test_dispatch_table_copies_its_input():
    handlers = {"a": _sync_handler}
    table = DispatchTable(handlers)
    handlers["b"] = _async_handler
    assert "b" not in table


def test_dispatch_table_rejects_bad_entries():
    with pytest.raises(ValueError):
        DispatchTable({"": _sync_handler})
    with pytest.raises(TypeError):
        DispatchTable({"a": "not callable"})


@pytest.mark.asyncio
async def test_dispatch_runs_sync_and_async_handlers():
    table = DispatchTable({"a": _sync_handler, "b": _async_handler})
    assert await table.dispatch("a", {"x": 1}, request_id=5) == (True, {"id": 5, "params": {"x": 1}}, None)
    assert await table.dispatch("b", {}) == (True, {"async": True}, None)


@pytest.mark.asyncio
async def test_dispatch_unknown_method():
    table = DispatchTable({"a": _sync_handler})
    ok, payload, error = await table.dispatch("nonexistent.method", {})
    assert ok is False and payload is None
    assert error == {"code": RpcErrorCode.METHOD_NOT_FOUND, "message": "Unknown method: nonexistent.method"}


@pytest.mark.asyncio
async def test_dispatch_maps_raised_rpc_error():
    async def _blocked(request_id, params):
        raise RpcError(AppErrorCode.CONTENT_BLOCKED, "blocked by policy", {"rule": "r1"})

    table = DispatchTable({"send": _blocked})
    ok, _, error = await table.dispatch("send", {})
    assert ok is False
    assert error == {"code": -32003, "message": "blocked by policy", "data": {"rule": "r1"}}


@pytest.mark.asyncio
async def test_dispatch_propagates_unexpected_exceptions():
    def _broken(request_id, params):
        raise KeyError("boom")

    table = DispatchTable({"broken": _broken})
    with pytest.raises(KeyError):
        await table.dispatch("broken", {})


@pytest.mark.asyncio
async def test_dispatch_rejects_failure_without_error_payload():
    table = DispatchTable({"bad": lambda request_id, params: (False, None, None)})
    with pytest.raises(ValueError):
        await table.dispatch("bad", {})


def test_response_from_result():
    ok = response_from_result(3, (True, {"pong": True}, None))
    assert ok.id == 3 and ok.result == {"pong": True}
    failed = response_from_result("x", (False, None, rpc_error(RpcErrorCode.INVALID_PARAMS, "bad", {"k": 1})))
    assert failed.id == "x"
    assert failed.error.code == -32602
    assert failed.error.data == {"k": 1}
