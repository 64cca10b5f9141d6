import asyncio

import pytest

from mcpbridge.mcp.correlator import MessageCorrelator
from mcpbridge.mcp.errors import MCPConnectionError, MCPTimeoutError, ProtocolError


class Outbox:
    def __init__(self):
        self.messages = []

    async def send(self, message):
        self.messages.append(message)

    def requests(self):
        return [m for m in self.messages if "method" in m and "id" in m]


async def _start(correlator, method, params=None, **kwargs):
    task = asyncio.ensure_future(correlator.request(method, params, **kwargs))
    await asyncio.sleep(0)
    return task


@pytest.mark.asyncio
async def test_ids_are_unique_and_increasing():
    outbox = Outbox()
    correlator = MessageCorrelator(outbox.send)

    tasks = [await _start(correlator, "tools/list") for _ in range(3)]
    ids = [m["id"] for m in outbox.requests()]
    assert ids == [1, 2, 3]
    assert correlator.pending_count == 3

    for request_id in ids:
        correlator.handle_message({"jsonrpc": "2.0", "id": request_id, "result": {}})
    await asyncio.gather(*tasks)
    assert correlator.pending_count == 0


@pytest.mark.asyncio
async def test_out_of_order_responses_reach_their_callers():
    outbox = Outbox()
    correlator = MessageCorrelator(outbox.send)

    first = await _start(correlator, "a")
    second = await _start(correlator, "b")

    correlator.handle_message({"jsonrpc": "2.0", "id": 2, "result": {"who": "b"}})
    correlator.handle_message({"jsonrpc": "2.0", "id": 1, "result": {"who": "a"}})

    assert await first == {"who": "a"}
    assert await second == {"who": "b"}


@pytest.mark.asyncio
async def test_params_omitted_when_not_given():
    outbox = Outbox()
    correlator = MessageCorrelator(outbox.send)

    task = await _start(correlator, "ping")
    assert "params" not in outbox.messages[0]
    assert outbox.messages[0]["jsonrpc"] == "2.0"
    correlator.handle_message({"jsonrpc": "2.0", "id": 1, "result": {}})
    await task


@pytest.mark.asyncio
async def test_error_response_raises_protocol_error():
    outbox = Outbox()
    correlator = MessageCorrelator(outbox.send)

    task = await _start(correlator, "tools/call")
    correlator.handle_message(
        {"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "bad params", "data": {"x": 1}}}
    )

    with pytest.raises(ProtocolError) as exc:
        await task
    assert exc.value.code == -32602
    assert exc.value.data == {"x": 1}
    assert "bad params" in str(exc.value)


@pytest.mark.asyncio
async def test_timeout_rejects_and_frees_the_entry():
    outbox = Outbox()
    correlator = MessageCorrelator(outbox.send, timeout=0.05)

    with pytest.raises(MCPTimeoutError) as exc:
        await correlator.request("tools/list")
    assert "Request timeout after 0.05s: tools/list" in str(exc.value)
    assert correlator.pending_count == 0

    # A late response for the expired id is dropped.
    correlator.handle_message({"jsonrpc": "2.0", "id": 1, "result": {}})
    assert correlator.pending_count == 0


@pytest.mark.asyncio
async def test_per_request_timeout_overrides_default():
    outbox = Outbox()
    correlator = MessageCorrelator(outbox.send, timeout=30.0)

    with pytest.raises(MCPTimeoutError):
        await correlator.request("slow", timeout=0.01)


@pytest.mark.asyncio
async def test_duplicate_response_is_a_noop():
    outbox = Outbox()
    correlator = MessageCorrelator(outbox.send)

    task = await _start(correlator, "a")
    correlator.handle_message({"jsonrpc": "2.0", "id": 1, "result": "first"})
    correlator.handle_message({"jsonrpc": "2.0", "id": 1, "result": "second"})
    assert await task == "first"


@pytest.mark.asyncio
async def test_notify_has_no_id_and_no_pending_entry():
    outbox = Outbox()
    correlator = MessageCorrelator(outbox.send)

    await correlator.notify("notifications/initialized")
    assert outbox.messages == [{"jsonrpc": "2.0", "method": "notifications/initialized"}]
    assert correlator.pending_count == 0


@pytest.mark.asyncio
async def test_reject_all_fails_every_pending_request():
    outbox = Outbox()
    correlator = MessageCorrelator(outbox.send)

    tasks = [await _start(correlator, f"m{i}") for i in range(3)]
    correlator.reject_all(MCPConnectionError("Transport closed"))
    # Responses arriving after the close find nothing to settle.
    for request_id in (1, 2, 3):
        correlator.handle_message({"jsonrpc": "2.0", "id": request_id, "result": {}})

    for task in tasks:
        with pytest.raises(MCPConnectionError):
            await task
    assert correlator.pending_count == 0


@pytest.mark.asyncio
async def test_send_failure_leaves_nothing_pending():
    async def broken_send(_message):
        raise MCPConnectionError("Not connected")

    correlator = MessageCorrelator(broken_send)
    with pytest.raises(MCPConnectionError):
        await correlator.request("tools/list")
    assert correlator.pending_count == 0


@pytest.mark.asyncio
async def test_cancelled_caller_frees_the_entry():
    outbox = Outbox()
    correlator = MessageCorrelator(outbox.send)

    task = await _start(correlator, "a")
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert correlator.pending_count == 0


@pytest.mark.asyncio
async def test_notifications_are_forwarded():
    seen = []
    outbox = Outbox()
    correlator = MessageCorrelator(outbox.send, on_notification=lambda m, p: seen.append((m, p)))

    correlator.handle_message({"jsonrpc": "2.0", "method": "notifications/tools/list_changed"})
    correlator.handle_message({"jsonrpc": "2.0", "method": "notifications/progress", "params": {"progress": 1}})

    assert seen == [
        ("notifications/tools/list_changed", {}),
        ("notifications/progress", {"progress": 1}),
    ]


@pytest.mark.asyncio
async def test_server_ping_is_answered_and_other_requests_refused():
    outbox = Outbox()
    correlator = MessageCorrelator(outbox.send)

    correlator.handle_message({"jsonrpc": "2.0", "id": "s1", "method": "ping"})
    correlator.handle_message({"jsonrpc": "2.0", "id": "s2", "method": "sampling/createMessage"})
    await asyncio.sleep(0.01)

    assert {"jsonrpc": "2.0", "id": "s1", "result": {}} in outbox.messages
    refused = next(m for m in outbox.messages if m.get("id") == "s2")
    assert refused["error"]["code"] == -32601


@pytest.mark.asyncio
async def test_malformed_and_unknown_messages_are_dropped():
    outbox = Outbox()
    correlator = MessageCorrelator(outbox.send)

    task = await _start(correlator, "a")
    correlator.handle_message({"jsonrpc": "2.0"})
    correlator.handle_message({"jsonrpc": "2.0", "id": 99, "result": {}})
    correlator.handle_message({"jsonrpc": "2.0", "id": "1", "result": {}})
    assert correlator.is_pending(1)

    correlator.handle_message({"jsonrpc": "2.0", "id": 1, "result": {}})
    await task
