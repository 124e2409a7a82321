"""Server-driven keepalive handling.

The device gateway decides the keepalive cadence: it sends ``ping`` with an
optional timeout, and the client answers with ``pong`` right away. If the
next ping does not arrive within that timeout the link is considered dead,
since a partitioned socket may never report a close or error on its own.
"""

import asyncio
from typing import Any, Callable, Optional

from loguru import logger

from ..protocol import Envelope, MessageType

Scheduler = Callable[[float, Callable[[], None]], Any]


def loop_scheduler(delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
    """Schedule a one-shot callback on the running event loop."""
    return asyncio.get_running_loop().call_later(delay, callback)


class HealthCheckMonitor:
    """Answers pings and owns the single pending failure deadline."""

    def __init__(
        self,
        send: Callable[[Envelope], None],
        on_failure: Callable[[], None],
        scheduler: Scheduler = loop_scheduler,
    ) -> None:
        self._send = send
        self._on_failure = on_failure
        self._scheduler = scheduler
        self._deadline: Optional[Any] = None

    @property
    def pending(self) -> bool:
        return self._deadline is not None

    def on_ping(self, timeout_seconds: int, session_id: Optional[str]) -> None:
        """Reply with pong and re-arm the failure deadline."""
        self._send(Envelope.build(MessageType.PONG, sid=session_id))

        self._cancel()
        if timeout_seconds > 0:
            self._deadline = self._scheduler(timeout_seconds, self._expired)
            logger.debug(f"Health check deadline armed: {timeout_seconds}s")

    def on_teardown(self) -> None:
        self._cancel()

    def _cancel(self) -> None:
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None

    def _expired(self) -> None:
        if self._deadline is None:
            return
        self._deadline = None
        logger.warning("Health check deadline expired without a ping")
        self._on_failure()
