"""Local tty front end for a terminal session.

Plays the part of the visual terminal: puts the local tty in raw mode,
forwards keystrokes to the session and writes shell output to stdout.
"""

import asyncio
import os
import sys
import termios
import tty
from typing import Optional, TextIO

from loguru import logger

from .terminal import Dimensions, MeasurementUnavailable, TerminalSession

# Ctrl-] closes the session locally, as in telnet
ESCAPE_BYTE = b"\x1d"


class LocalConsole:
    """Bridges the process's stdin/stdout to a TerminalSession."""

    def __init__(self, stdin: TextIO = sys.stdin, stdout: TextIO = sys.stdout) -> None:
        self.stdin = stdin
        self.stdout = stdout
        self._session: Optional[TerminalSession] = None
        self._saved_attrs: Optional[list] = None
        self._reading = False

    def measure(self) -> Dimensions:
        if not self.stdout.isatty():
            raise MeasurementUnavailable("stdout is not a terminal")
        size = os.get_terminal_size(self.stdout.fileno())
        return Dimensions(rows=size.lines, cols=size.columns)

    def write(self, data: bytes) -> None:
        self.stdout.buffer.write(data)
        self.stdout.flush()

    def notify(self, message: str, duration_ms: int) -> None:
        logger.info(message)

    def attach(self, session: TerminalSession) -> None:
        """Start forwarding stdin to the session."""
        self._session = session
        fd = self.stdin.fileno()
        if self.stdin.isatty():
            self._saved_attrs = termios.tcgetattr(fd)
            tty.setraw(fd)
        asyncio.get_running_loop().add_reader(fd, self._on_stdin)
        self._reading = True

    def detach(self) -> None:
        """Stop forwarding and restore the tty."""
        fd = self.stdin.fileno()
        if self._reading:
            asyncio.get_running_loop().remove_reader(fd)
            self._reading = False
        if self._saved_attrs is not None:
            termios.tcsetattr(fd, termios.TCSADRAIN, self._saved_attrs)
            self._saved_attrs = None
        self._session = None

    def _on_stdin(self) -> None:
        session = self._session
        if session is None:
            return
        data = os.read(self.stdin.fileno(), 4096)
        if not data or ESCAPE_BYTE in data:
            logger.debug("Local input closed, cancelling session")
            asyncio.get_running_loop().remove_reader(self.stdin.fileno())
            self._reading = False
            session.cancel()
            return
        session.send_input(data)
