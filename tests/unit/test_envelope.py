"""Unit tests for the envelope codec."""

import msgpack
import pytest

from devterm.protocol import (
    PROTO_SHELL,
    DecodeError,
    Envelope,
    Header,
    MessageType,
    decode,
    encode,
)


@pytest.mark.parametrize(
    "envelope",
    [
        Envelope.build(
            MessageType.NEW,
            sid=None,
            props={"terminal_height": 24, "terminal_width": 80},
        ),
        Envelope.build(MessageType.SHELL, sid="abc-123", body=b"ls -la\r"),
        Envelope.build(MessageType.PONG, sid="abc-123"),
        Envelope(header=Header(proto=3, typ=MessageType.STOP)),
        Envelope.build(MessageType.SHELL, sid="abc-123", body=b"\x00\xff\x1b[0m"),
    ],
    ids=["new", "shell", "pong", "other-proto", "binary-body"],
)
def test_round_trip(envelope):
    """decode(encode(e)) == e, including null sid, props and body."""
    assert decode(encode(envelope)) == envelope


def test_encode_uses_wire_field_names():
    """Encoded frames carry hdr.proto/typ/sid/props and a binary body."""
    data = encode(Envelope.build(MessageType.SHELL, sid="s1", body=b"hi"))

    raw = msgpack.unpackb(data, raw=False)

    assert raw == {
        "hdr": {"proto": 1, "typ": "shell", "sid": "s1", "props": None},
        "body": b"hi",
    }


def test_encode_is_deterministic():
    """The same envelope always encodes to the same bytes."""
    envelope = Envelope.build(
        MessageType.RESIZE, sid="s1", props={"terminal_height": 40, "terminal_width": 120}
    )
    assert encode(envelope) == encode(envelope)


def test_build_uses_shell_protocol():
    envelope = Envelope.build(MessageType.PING)
    assert envelope.header.proto == PROTO_SHELL
    assert envelope.is_shell_protocol


def test_decode_frame_without_body_key():
    """Peers may omit the body entirely."""
    data = msgpack.packb(
        {
            "hdr": {
                "proto": 1,
                "typ": "new",
                "sid": "s1",
                "props": {"status": 1},
            }
        },
        use_bin_type=True,
    )

    envelope = decode(data)

    assert envelope.header.typ is MessageType.NEW
    assert envelope.header.sid == "s1"
    assert envelope.header.props == {"status": 1}
    assert envelope.body is None


def test_decode_string_body_as_utf8_bytes():
    data = msgpack.packb(
        {"hdr": {"proto": 1, "typ": "shell", "sid": "s1"}, "body": "héllo"},
        use_bin_type=True,
    )
    assert decode(data).body == "héllo".encode("utf-8")


def test_decode_accepts_bytearray():
    data = bytearray(encode(Envelope.build(MessageType.STOP, sid="s1")))
    assert decode(data).header.typ is MessageType.STOP


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"\xc1",
        b"\x82\xa3hdr",
        msgpack.packb([1, 2, 3]),
        msgpack.packb({"body": b"x"}, use_bin_type=True),
        msgpack.packb({"hdr": "nope"}),
        msgpack.packb({"hdr": {"proto": "1", "typ": "shell"}}),
        msgpack.packb({"hdr": {"proto": True, "typ": "shell"}}),
        msgpack.packb({"hdr": {"proto": 1, "typ": "bogus"}}),
        msgpack.packb({"hdr": {"proto": 1, "typ": "shell", "sid": 42}}),
        msgpack.packb({"hdr": {"proto": 1, "typ": "shell", "props": [1]}}),
        msgpack.packb({"hdr": {"proto": 1, "typ": "shell"}, "body": 7}),
    ],
    ids=[
        "empty",
        "reserved-byte",
        "truncated",
        "not-a-map",
        "no-header",
        "header-not-map",
        "proto-string",
        "proto-bool",
        "unknown-type",
        "sid-int",
        "props-list",
        "body-int",
    ],
)
def test_decode_malformed_raises_decode_error(data):
    with pytest.raises(DecodeError):
        decode(data)


def test_decode_rejects_text_frames():
    with pytest.raises(DecodeError):
        decode("not bytes")


def test_decode_error_is_value_error():
    assert issubclass(DecodeError, ValueError)
