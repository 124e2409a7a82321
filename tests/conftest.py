"""Pytest fixtures for devterm tests."""

import asyncio
from typing import Callable, Optional

import pytest
import pytest_asyncio

from devterm.config import Config
from devterm.protocol import Envelope, decode, encode
from devterm.terminal import Dimensions, MeasurementUnavailable, TerminalSession
from devterm.terminal.transport import Transport
from devterm.terminal.types import MessageReceived, TransportClosed, TransportFailed


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run live integration tests that require a device gateway",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "live: marks tests as live integration tests (require a device gateway)",
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --live flag is passed."""
    if config.getoption("--live"):
        return

    skip_live = pytest.mark.skip(reason="Need --live option to run live tests")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


class FakeTransport(Transport):
    """In-memory transport recording everything the session sends."""

    def __init__(self, open_error: Optional[BaseException] = None) -> None:
        self.open_error = open_error
        self.sent: list[bytes] = []
        self.open_calls = 0
        self.close_calls = 0
        self._open = False
        self._events: asyncio.Queue = asyncio.Queue()

    async def open(self) -> None:
        self.open_calls += 1
        if self.open_error is not None:
            raise self.open_error
        self._open = True

    def send(self, data: bytes) -> bool:
        if not self._open:
            return False
        self.sent.append(data)
        return True

    def close(self) -> None:
        self.close_calls += 1
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def events(self):
        while True:
            event = await self._events.get()
            yield event
            if isinstance(event, (TransportClosed, TransportFailed)):
                return

    def push(self, event) -> None:
        self._events.put_nowait(event)

    @property
    def envelopes(self) -> list[Envelope]:
        return [decode(data) for data in self.sent]


class FakeTimer:
    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeClock:
    """Deterministic stand-in for loop.call_later."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[FakeTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.pending if t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.timers.remove(timer)
            self.now = timer.when
            timer.callback()
        self.now = target


class FakeTerminal:
    """Records output and notifications, reports a settable geometry."""

    def __init__(self, rows: int = 24, cols: int = 80) -> None:
        self.dimensions: Optional[Dimensions] = Dimensions(rows=rows, cols=cols)
        self.output: list[bytes] = []
        self.notifications: list[tuple[str, int]] = []
        self.terminated_calls = 0

    def measure(self) -> Dimensions:
        if self.dimensions is None:
            raise MeasurementUnavailable("terminal not visible")
        return self.dimensions

    def write(self, data: bytes) -> None:
        self.output.append(data)

    def notify(self, message: str, duration_ms: int) -> None:
        self.notifications.append((message, duration_ms))

    def on_terminated(self) -> None:
        self.terminated_calls += 1

    @property
    def messages(self) -> list[str]:
        return [message for message, _ in self.notifications]


class SessionHarness:
    """Builds sessions wired to fakes and cleans up their reader tasks."""

    def __init__(self) -> None:
        self.clock = FakeClock()
        self.terminal = FakeTerminal()
        self.settings = Config(
            GATEWAY_URL="wss://gateway.test",
            RESIZE_POLL_INTERVAL=1.0,
            CLOSE_GRACE=10.0,
            NOTIFY_DURATION_MS=5000,
        )
        self.sessions: list[TerminalSession] = []

    def make_session(self, transport: Optional[Transport] = None) -> TerminalSession:
        session = TerminalSession(
            "device-1",
            transport or FakeTransport(),
            write=self.terminal.write,
            notify=self.terminal.notify,
            measure=self.terminal.measure,
            on_terminated=self.terminal.on_terminated,
            scheduler=self.clock,
            settings=self.settings,
        )
        self.sessions.append(session)
        return session

    @staticmethod
    def deliver(session: TerminalSession, envelope: Envelope) -> None:
        session.dispatch(MessageReceived(data=encode(envelope)))

    async def shutdown(self) -> None:
        for session in self.sessions:
            reader = session._reader
            if reader is not None and not reader.done():
                reader.cancel()
                try:
                    await reader
                except asyncio.CancelledError:
                    pass


@pytest_asyncio.fixture
async def harness():
    """Session harness with fake transport, clock and terminal."""
    h = SessionHarness()
    yield h
    await h.shutdown()


@pytest.fixture
def clock() -> FakeClock:
    """Deterministic scheduler."""
    return FakeClock()
