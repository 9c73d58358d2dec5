from __future__ import annotations

import asyncio
import json

import pytest

from mudbridge import protocol
from mudbridge.correlator import Correlator
from mudbridge.errors import ConnectionClosedError, RequestPendingError, RequestTimeoutError


def _msg(payload):
    return protocol.decode(json.dumps(payload))


REPLY = _msg({"type": "command_response", "success": True, "response": "A dim room."})


@pytest.mark.asyncio
async def test_reply_resolves_pending_request():
    sent = []
    correlator = Correlator(sent.append, timeout=1.0)

    future = correlator.send(protocol.execute_command("look"))
    assert sent == [{"type": "execute_command", "command": "look"}]
    assert correlator.busy

    assert correlator.notify(REPLY)
    assert (await future) is REPLY
    assert not correlator.busy
    assert correlator.pending is None


@pytest.mark.asyncio
async def test_second_send_fails_without_writing():
    sent = []
    correlator = Correlator(sent.append, timeout=1.0)

    first = correlator.send(protocol.execute_command("look"))
    with pytest.raises(RequestPendingError):
        correlator.send(protocol.execute_command("north"))
    assert len(sent) == 1

    correlator.notify(REPLY)
    assert (await first).text == "A dim room."

    second = correlator.send(protocol.execute_command("north"))
    assert len(sent) == 2
    correlator.notify(_msg({"success": True, "output": "You go north."}))
    assert (await second).text == "You go north."


@pytest.mark.asyncio
async def test_timeout_rejects_and_frees_the_slot():
    sent = []
    correlator = Correlator(sent.append, timeout=0.05)

    future = correlator.send(protocol.execute_command("look"))
    with pytest.raises(RequestTimeoutError):
        await future
    assert not correlator.busy

    again = correlator.send(protocol.execute_command("look"))
    correlator.notify(REPLY)
    assert (await again) is REPLY


@pytest.mark.asyncio
async def test_late_reply_after_timeout_is_discarded():
    correlator = Correlator(lambda _: None, timeout=0.05)
    future = correlator.send(protocol.execute_command("look"))
    with pytest.raises(RequestTimeoutError):
        await future
    assert correlator.notify(REPLY) is False


@pytest.mark.asyncio
async def test_per_call_timeout_overrides_default():
    correlator = Correlator(lambda _: None, timeout=10.0)
    future = correlator.send(protocol.execute_command("look"), timeout=0.05)
    with pytest.raises(RequestTimeoutError, match="0.05"):
        await asyncio.wait_for(future, timeout=1.0)


@pytest.mark.asyncio
async def test_resolution_cancels_deadline_timer():
    correlator = Correlator(lambda _: None, timeout=5.0)
    future = correlator.send(protocol.execute_command("look"))
    request = correlator.pending
    assert request is not None and request.timer is not None
    timer = request.timer

    correlator.notify(REPLY)
    await future
    assert timer.cancelled()
    assert request.timer is None


@pytest.mark.asyncio
async def test_unsolicited_message_is_discarded():
    correlator = Correlator(lambda _: None, timeout=1.0)
    assert correlator.notify(REPLY) is False


@pytest.mark.asyncio
async def test_non_reply_messages_do_not_resolve():
    correlator = Correlator(lambda _: None, timeout=1.0)
    future = correlator.send(protocol.execute_command("look"))
    assert correlator.notify(_msg({"type": "tell", "from": "bob"})) is False
    assert not future.done()
    correlator.notify(REPLY)
    await future


@pytest.mark.asyncio
async def test_error_message_resolves_as_reply():
    correlator = Correlator(lambda _: None, timeout=1.0)
    future = correlator.send(protocol.execute_command("dance"))
    correlator.notify(_msg({"type": "error", "error": "Unknown command"}))
    message = await future
    assert not message.succeeded
    assert message.error == "Unknown command"


@pytest.mark.asyncio
async def test_fail_rejects_pending_request():
    correlator = Correlator(lambda _: None, timeout=1.0)
    future = correlator.send(protocol.execute_command("look"))
    correlator.fail(ConnectionClosedError("gone"))
    with pytest.raises(ConnectionClosedError):
        await future
    assert not correlator.busy
    correlator.fail(ConnectionClosedError("again"))


@pytest.mark.asyncio
async def test_cancelled_caller_frees_the_slot():
    correlator = Correlator(lambda _: None, timeout=1.0)
    future = correlator.send(protocol.execute_command("look"))
    future.cancel()
    await asyncio.sleep(0)
    assert not correlator.busy


@pytest.mark.asyncio
async def test_write_failure_releases_the_slot():
    def broken(_):
        raise ConnectionClosedError("Connection is not open")

    correlator = Correlator(broken, timeout=1.0)
    with pytest.raises(ConnectionClosedError):
        correlator.send(protocol.execute_command("look"))
    assert not correlator.busy
