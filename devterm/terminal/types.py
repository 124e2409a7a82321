"""Terminal session states, events and errors."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class SessionState(Enum):
    """State of a terminal session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.CLOSED, SessionState.FAILED)


class CloseReason(Enum):
    """Why a session entered the closing state."""

    CANCELLED = "cancelled"
    REMOTE_STOP = "remote_stop"
    HEALTH_CHECK = "health_check"


class TerminalError(Exception):
    """Base class for terminal session failures."""


class TransportError(TerminalError):
    """Connection-level failure of the underlying transport."""


class HandshakeRejected(TerminalError):
    """The device refused to open a shell session."""


class HealthCheckTimeout(TerminalError):
    """No ping renewal arrived before the requested deadline."""


class UncleanClose(TerminalError):
    """The transport closed without a clean-close indicator."""


# Inbound events. Everything that can happen to a session is one of these,
# delivered to TerminalSession.dispatch() on the session's event loop.


@dataclass(frozen=True)
class TransportOpened:
    pass


@dataclass(frozen=True)
class MessageReceived:
    data: bytes


@dataclass(frozen=True)
class TransportClosed:
    clean: bool
    code: Optional[int] = None
    reason: str = ""


@dataclass(frozen=True)
class TransportFailed:
    error: BaseException


@dataclass(frozen=True)
class HealthCheckExpired:
    pass


@dataclass(frozen=True)
class DimensionTick:
    pass


@dataclass(frozen=True)
class CancelRequested:
    pass


TransportEvent = Union[MessageReceived, TransportClosed, TransportFailed]

SessionEvent = Union[
    TransportOpened,
    MessageReceived,
    TransportClosed,
    TransportFailed,
    HealthCheckExpired,
    DimensionTick,
    CancelRequested,
]
