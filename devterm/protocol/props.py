"""Typed views over the generic ``hdr.props`` map.

The wire carries an untyped property bag whose meaning depends on the
message type. These dataclasses are decoded from it at the protocol
boundary so that session logic never touches raw dictionaries.
"""

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional

# Values of props["status"] on a "new" acknowledgement
STATUS_NORMAL = 1
STATUS_ERROR = 2


def _as_int(value: Any) -> Optional[int]:
    """Leniently coerce a property value to int (accepts numeric strings)."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        # inf and nan carry no usable number
        return int(value) if math.isfinite(value) else None
    if isinstance(value, (str, bytes)):
        try:
            return int(value)
        except ValueError:
            return None
    return None


@dataclass(frozen=True)
class TerminalSizeProps:
    """Geometry carried by "new" requests and "resize" messages."""

    height: int
    width: int

    def to_props(self) -> dict[str, int]:
        return {"terminal_height": self.height, "terminal_width": self.width}

    @classmethod
    def from_props(cls, props: Optional[Mapping[str, Any]]) -> Optional["TerminalSizeProps"]:
        props = props or {}
        height = _as_int(props.get("terminal_height"))
        width = _as_int(props.get("terminal_width"))
        if height is None or width is None:
            return None
        return cls(height=height, width=width)


@dataclass(frozen=True)
class PingProps:
    """Health-check request; ``timeout`` is in seconds, 0 means no deadline."""

    timeout: int = 0

    def to_props(self) -> dict[str, int]:
        return {"timeout": self.timeout}

    @classmethod
    def from_props(cls, props: Optional[Mapping[str, Any]]) -> "PingProps":
        timeout = _as_int((props or {}).get("timeout"))
        return cls(timeout=timeout if timeout is not None and timeout > 0 else 0)


@dataclass(frozen=True)
class StatusProps:
    """Status indicator on a "new" acknowledgement."""

    status: Optional[int] = None

    @property
    def is_error(self) -> bool:
        return self.status == STATUS_ERROR

    def to_props(self) -> dict[str, Any]:
        return {"status": self.status}

    @classmethod
    def from_props(cls, props: Optional[Mapping[str, Any]]) -> "StatusProps":
        return cls(status=_as_int((props or {}).get("status")))
