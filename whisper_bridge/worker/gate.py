"""Single-flight admission for recognition requests."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from .errors import Busy, ProcessLost, RequestTimeout, WorkerBridgeError
from .protocol import RecognitionResult

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    """The one request currently waiting on the worker."""

    token: int
    file_path: str
    future: asyncio.Future
    created_at: float = field(default_factory=time.time)
    timeout_handle: Optional[asyncio.TimerHandle] = None


class RequestGate:
    """
    Admits at most one outstanding request at a time.

    Each admitted request ends in exactly one terminal transition:
    resolved, timed out, or failed (process lost / write failure). Whichever
    transition runs first wins; later ones carry a stale token and do nothing.
    """

    def __init__(
        self,
        request_timeout: float = 120.0,
        on_timeout: Optional[Callable[[PendingRequest], None]] = None,
    ):
        """
        Initialize gate.

        Args:
            request_timeout: Seconds an admitted request may wait for a result
            on_timeout: Called with the request after it has timed out
        """
        self.request_timeout = request_timeout
        self.on_timeout = on_timeout
        self._pending: Optional[PendingRequest] = None
        self._next_token = 0
        self.timed_out = 0

    @property
    def pending(self) -> Optional[PendingRequest]:
        return self._pending

    @property
    def busy(self) -> bool:
        return self._pending is not None

    def admit(self, file_path: str) -> PendingRequest:
        """
        Register a new in-flight request and arm its timeout.

        Args:
            file_path: Request payload forwarded to the worker

        Returns:
            The admitted PendingRequest; await its future for the outcome

        Raises:
            Busy: If another request is still pending
        """
        if self._pending is not None:
            raise Busy()

        loop = asyncio.get_running_loop()
        self._next_token += 1
        pending = PendingRequest(
            token=self._next_token,
            file_path=file_path,
            future=loop.create_future(),
        )
        pending.timeout_handle = loop.call_later(
            self.request_timeout, self.timeout_check, pending.token
        )
        self._pending = pending
        return pending

    def _take(self, token: int) -> Optional[PendingRequest]:
        pending = self._pending
        if pending is None or pending.token != token:
            return None
        self._pending = None
        if pending.timeout_handle is not None:
            pending.timeout_handle.cancel()
        return pending

    def resolve(self, token: int, result: RecognitionResult) -> bool:
        """Complete the pending request with a result. Stale tokens are ignored."""
        pending = self._take(token)
        if pending is None:
            return False
        if not pending.future.done():
            pending.future.set_result(result)
        logger.info(
            f"Request {token} resolved in {time.time() - pending.created_at:.2f}s"
        )
        return True

    def fail(self, token: int, error: WorkerBridgeError) -> bool:
        """Complete the pending request with a failure. Stale tokens are ignored."""
        return self._fail(token, error) is not None

    def _fail(self, token: int, error: WorkerBridgeError) -> Optional[PendingRequest]:
        pending = self._take(token)
        if pending is None:
            return None
        if not pending.future.done():
            pending.future.set_exception(error)
        return pending

    def timeout_check(self, token: int) -> None:
        """Timer callback: time out the request if it is still pending."""
        pending = self._fail(token, RequestTimeout())
        if pending is None:
            return

        self.timed_out += 1
        logger.warning(f"Request {token} timed out after {self.request_timeout}s")
        if self.on_timeout is not None:
            self.on_timeout(pending)

    def fail_all(self, error: Optional[WorkerBridgeError] = None) -> None:
        """Fail whatever is pending, bypassing the timeout."""
        if self._pending is None:
            return
        token = self._pending.token
        error = error or ProcessLost()
        self.fail(token, error)
        logger.warning(f"Request {token} failed: {error}")
