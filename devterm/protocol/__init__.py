"""Wire protocol for device shell sessions."""

from .envelope import PROTO_SHELL, DecodeError, Envelope, Header, MessageType, decode, encode
from .props import STATUS_ERROR, STATUS_NORMAL, PingProps, StatusProps, TerminalSizeProps

__all__ = [
    "PROTO_SHELL",
    "STATUS_ERROR",
    "STATUS_NORMAL",
    "DecodeError",
    "Envelope",
    "Header",
    "MessageType",
    "PingProps",
    "StatusProps",
    "TerminalSizeProps",
    "decode",
    "encode",
]
