"""Request/response correlation for one session.

Responses may arrive in any order; they are matched to callers solely by id.
Each request carries its own deadline. There is no per-request cancellation:
only reject_all(), used at session teardown, fails everything at once.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from lspbridge.errors import RequestTimeout, ServerError
from lspbridge.protocol.jsonrpc import JsonRpcMessage

log = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0

SendFunc = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass
class PendingRequest:
    """An outstanding request awaiting its response or its deadline."""

    id: int
    method: str
    future: asyncio.Future[Any]
    deadline: float  # loop.time() at which the request times out
    timer: asyncio.TimerHandle | None = None


class RequestCorrelator:
    """Assigns request ids and resolves callers when responses arrive.

    Args:
        send: Coroutine that puts one message on the wire.
        timeout: Seconds to wait for each response.
    """

    def __init__(self, send: SendFunc, *, timeout: float = DEFAULT_REQUEST_TIMEOUT) -> None:
        self._send = send
        self.timeout = timeout
        self._last_id = 0
        self._pending: dict[int, PendingRequest] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, request_id: int) -> bool:
        return request_id in self._pending

    def next_id(self) -> int:
        """Allocate the next request id (1, 2, 3, ...); ids are never reused."""
        self._last_id += 1
        return self._last_id

    async def send_request(self, method: str, params: Any = None) -> Any:
        """Send a request and wait for its result.

        Raises:
            ServerError: The server answered with a JSON-RPC error.
            RequestTimeout: No answer before the deadline.
            ConnectionLost: The session ended first.
            TransportError: The request could not be written.
        """
        loop = asyncio.get_running_loop()
        request_id = self.next_id()
        future: asyncio.Future[Any] = loop.create_future()
        pending = PendingRequest(
            id=request_id,
            method=method,
            future=future,
            deadline=loop.time() + self.timeout,
        )
        pending.timer = loop.call_at(pending.deadline, self.on_timeout, request_id)
        self._pending[request_id] = pending

        message = JsonRpcMessage.request(request_id, method, params)
        try:
            await self._send(message.to_dict())
        except BaseException:
            self._discard(request_id)
            raise

        log.debug("Sent request %s (id=%d)", method, request_id)
        try:
            return await future
        finally:
            # A cancelled caller leaves nothing behind
            self._discard(request_id)

    async def send_notification(self, method: str, params: Any = None) -> None:
        """Send a notification; no id, no bookkeeping."""
        await self._send(JsonRpcMessage.notification(method, params).to_dict())

    def on_response(self, message: JsonRpcMessage) -> bool:
        """Resolve the caller waiting on this response.

        Responses for unknown ids (late, duplicate or foreign) are dropped.

        Returns:
            True if a pending request was resolved.
        """
        request_id = message.id
        pending = self._pending.pop(request_id, None) if isinstance(request_id, int) else None
        if pending is None:
            log.debug("Dropping response for unknown request id %r", request_id)
            return False

        if pending.timer is not None:
            pending.timer.cancel()
        if pending.future.done():
            return False

        if message.error is not None:
            error = ServerError.from_error(message.error)
            log.debug("Request %s (id=%d) failed: %s", pending.method, pending.id, error.message)
            pending.future.set_exception(error)
        else:
            pending.future.set_result(message.result)
        return True

    def on_timeout(self, request_id: int) -> None:
        """Reject a request whose deadline passed without a response."""
        pending = self._pending.pop(request_id, None)
        if pending is None or pending.future.done():
            return
        log.warning("Request %s (id=%d) timed out", pending.method, request_id)
        pending.future.set_exception(RequestTimeout(pending.method, request_id, self.timeout))

    def reject_all(self, exc: BaseException) -> int:
        """Fail every pending request with `exc`. Returns how many were rejected."""
        pending_requests = list(self._pending.values())
        self._pending.clear()

        for pending in pending_requests:
            if pending.timer is not None:
                pending.timer.cancel()
            if not pending.future.done():
                pending.future.set_exception(exc)

        if pending_requests:
            log.debug("Rejected %d pending request(s): %s", len(pending_requests), exc)
        return len(pending_requests)

    def _discard(self, request_id: int) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()
