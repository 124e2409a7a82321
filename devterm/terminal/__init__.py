"""Remote terminal sessions with devices."""

from .dimensions import DimensionTracker, Dimensions, MeasurementUnavailable
from .healthcheck import HealthCheckMonitor
from .pool import TerminalSessionPool
from .session import TerminalSession
from .transport import Transport, WebSocketTransport
from .types import (
    CloseReason,
    HandshakeRejected,
    HealthCheckTimeout,
    SessionState,
    TerminalError,
    TransportError,
    UncleanClose,
)

__all__ = [
    "CloseReason",
    "DimensionTracker",
    "Dimensions",
    "HandshakeRejected",
    "HealthCheckMonitor",
    "HealthCheckTimeout",
    "MeasurementUnavailable",
    "SessionState",
    "TerminalError",
    "TerminalSession",
    "TerminalSessionPool",
    "Transport",
    "TransportError",
    "UncleanClose",
    "WebSocketTransport",
]
