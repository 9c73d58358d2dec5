"""Single-flight request/response matching for a ready MUD session.

The server does not echo any request identifier, so a reply can only be
attributed by arrival order. At most one command is therefore allowed on
the wire at a time; a second caller is turned away instead of queued.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import RequestPendingError, RequestTimeoutError
from .protocol import Message, MessageKind, Payload


LOG = logging.getLogger("mudbridge.correlator")

_REPLY_KINDS = (MessageKind.REPLY, MessageKind.ERROR)


@dataclass
class PendingRequest:
    key: int
    command: Payload
    deadline: float
    window: float
    future: "asyncio.Future[Message]"
    timer: Optional[asyncio.TimerHandle] = None


class Correlator:
    def __init__(
        self,
        send: Callable[[Payload], None],
        timeout: float,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self._send = send
        self.timeout = timeout
        self._loop = loop
        self._keys = itertools.count(1)
        self._pending: Optional[PendingRequest] = None

    @property
    def pending(self) -> Optional[PendingRequest]:
        return self._pending

    @property
    def busy(self) -> bool:
        return self._pending is not None

    def send(self, command: Payload, timeout: Optional[float] = None) -> "asyncio.Future[Message]":
        if self._pending is not None:
            raise RequestPendingError()

        loop = self._loop or asyncio.get_running_loop()
        window = self.timeout if timeout is None else timeout
        request = PendingRequest(
            key=next(self._keys),
            command=command,
            deadline=loop.time() + window,
            window=window,
            future=loop.create_future(),
        )
        # Claim the slot before writing so a re-entrant send is refused.
        self._pending = request
        try:
            self._send(command)
        except Exception:
            self._pending = None
            raise
        request.timer = loop.call_at(request.deadline, self._expire, request)
        request.future.add_done_callback(lambda _fut: self._release(request))
        LOG.debug("Request %d sent: %s", request.key, command)
        return request.future

    def notify(self, message: Message) -> bool:
        request = self._pending
        if request is None:
            LOG.debug("Discarding unsolicited %s message: %s", message.kind.value, message.payload)
            return False
        if message.kind not in _REPLY_KINDS:
            LOG.warning("Ignoring %s message while request %d is pending", message.kind.value, request.key)
            return False
        if not request.future.done():
            request.future.set_result(message)
        self._release(request)
        return True

    def fail(self, exc: BaseException) -> None:
        request = self._pending
        if request is None:
            return
        if not request.future.done():
            request.future.set_exception(exc)
        self._release(request)

    def _expire(self, request: PendingRequest) -> None:
        if self._pending is not request:
            return
        LOG.warning("Request %d timed out after %.1fs", request.key, request.window)
        if not request.future.done():
            request.future.set_exception(
                RequestTimeoutError(f"No reply within {request.window:g}s")
            )
        self._release(request)

    def _release(self, request: PendingRequest) -> None:
        if request.timer is not None:
            request.timer.cancel()
            request.timer = None
        if self._pending is request:
            self._pending = None
