"""Binary envelope codec for the device shell protocol.

Every transport message is one msgpack map of the form::

    {"hdr": {"proto": 1, "typ": "shell", "sid": "...", "props": {...}},
     "body": b"..."}

Field names are part of the wire contract shared with the device gateway.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

import msgpack

# Shell sub-protocol identifier; envelopes for any other protocol are ignored
PROTO_SHELL = 1


class MessageType(str, Enum):
    """Envelope message types of the shell sub-protocol."""

    NEW = "new"
    PING = "ping"
    PONG = "pong"
    RESIZE = "resize"
    SHELL = "shell"
    STOP = "stop"


class DecodeError(ValueError):
    """Raised when an inbound frame is not a well-formed envelope."""


@dataclass(frozen=True)
class Header:
    """Envelope header (``hdr`` on the wire)."""

    proto: int
    typ: MessageType
    sid: Optional[str] = None
    props: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class Envelope:
    """A single protocol message: header plus optional raw body."""

    header: Header
    body: Optional[bytes] = None

    @classmethod
    def build(
        cls,
        typ: MessageType,
        sid: Optional[str] = None,
        props: Optional[Mapping[str, Any]] = None,
        body: Optional[bytes] = None,
    ) -> "Envelope":
        """Build a shell-protocol envelope."""
        return cls(
            header=Header(
                proto=PROTO_SHELL,
                typ=typ,
                sid=sid,
                props=dict(props) if props is not None else None,
            ),
            body=body,
        )

    @property
    def is_shell_protocol(self) -> bool:
        return self.header.proto == PROTO_SHELL


def encode(envelope: Envelope) -> bytes:
    """Serialize an envelope to its msgpack wire form."""
    header = envelope.header
    payload = {
        "hdr": {
            "proto": header.proto,
            "typ": header.typ.value,
            "sid": header.sid,
            "props": header.props,
        },
        "body": envelope.body,
    }
    return msgpack.packb(payload, use_bin_type=True)


def decode(data: bytes) -> Envelope:
    """Parse a msgpack wire frame into an envelope.

    Raises
    ------
    DecodeError
        If the frame is not valid msgpack or does not match the envelope schema.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise DecodeError(f"Expected a binary frame, got {type(data).__name__}")

    try:
        obj = msgpack.unpackb(bytes(data), raw=False)
    except (msgpack.exceptions.UnpackException, ValueError, TypeError) as e:
        raise DecodeError(f"Invalid msgpack frame: {e}") from e

    if not isinstance(obj, dict):
        raise DecodeError("Envelope must be a map")

    hdr = obj.get("hdr")
    if not isinstance(hdr, dict):
        raise DecodeError("Envelope is missing its header")

    proto = hdr.get("proto")
    # bool is an int subclass but never a valid protocol id
    if not isinstance(proto, int) or isinstance(proto, bool):
        raise DecodeError(f"Invalid protocol id: {proto!r}")

    try:
        typ = MessageType(hdr.get("typ"))
    except ValueError as e:
        raise DecodeError(f"Unknown message type: {hdr.get('typ')!r}") from e

    sid = hdr.get("sid")
    if sid is not None and not isinstance(sid, str):
        raise DecodeError(f"Invalid session id: {sid!r}")

    props = hdr.get("props")
    if props is not None and not isinstance(props, dict):
        raise DecodeError("Header properties must be a map")

    body = obj.get("body")
    if isinstance(body, str):
        body = body.encode("utf-8")
    elif body is not None and not isinstance(body, bytes):
        raise DecodeError(f"Invalid body type: {type(body).__name__}")

    return Envelope(header=Header(proto=proto, typ=typ, sid=sid, props=props), body=body)
