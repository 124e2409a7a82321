"""Unit tests for the local console front end and CLI parsing."""

import io

import pytest

from devterm.app import build_settings, parse_args
from devterm.config import config
from devterm.console import LocalConsole
from devterm.terminal import MeasurementUnavailable


def _text_stream() -> io.TextIOWrapper:
    return io.TextIOWrapper(io.BytesIO(), encoding="utf-8")


def test_measure_requires_a_tty():
    console = LocalConsole(stdin=_text_stream(), stdout=_text_stream())

    with pytest.raises(MeasurementUnavailable):
        console.measure()


def test_write_passes_raw_bytes_through():
    stdout = _text_stream()
    console = LocalConsole(stdin=_text_stream(), stdout=stdout)

    console.write(b"\x1b[1mbold\x1b[0m")

    assert stdout.buffer.getvalue() == b"\x1b[1mbold\x1b[0m"


def test_parse_args():
    args = parse_args(["dev-42", "--gateway", "https://gw.example.io", "--insecure"])

    assert args.device_id == "dev-42"
    assert args.gateway == "https://gw.example.io"
    assert args.token is None
    assert args.insecure is True


def test_build_settings_applies_overrides():
    settings = build_settings(parse_args(["dev", "--gateway", "http://gw:80", "--token", "t"]))

    assert settings.GATEWAY_URL == "http://gw:80"
    assert settings.API_TOKEN == "t"
    assert settings.SSL_VERIFY is True


def test_build_settings_without_overrides_uses_global_config():
    assert build_settings(parse_args(["dev"])) is config
