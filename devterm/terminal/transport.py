"""Message transports carrying envelopes between a session and the gateway."""

import asyncio
import ssl
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from loguru import logger
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from .types import MessageReceived, TransportClosed, TransportEvent, TransportFailed


class Transport(ABC):
    """Full-duplex, message-oriented connection used by a terminal session.

    Sends are fire-and-forget onto the transport's own queue. Everything the
    remote side does is reported through ``events()``, which ends after a
    single TransportClosed or TransportFailed event.
    """

    @abstractmethod
    async def open(self) -> None:
        """Establish the connection; raises on failure."""

    @abstractmethod
    def send(self, data: bytes) -> bool:
        """Queue a binary message. Returns False if the transport is not open."""

    @abstractmethod
    def close(self) -> None:
        """Start a graceful close; completion is reported through events()."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether messages can still be sent."""

    @abstractmethod
    def events(self) -> AsyncIterator[TransportEvent]:
        """Iterate inbound transport events."""


class WebSocketTransport(Transport):
    """Transport over a websocket connection to the device gateway."""

    def __init__(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
        ssl_verify: bool = True,
        open_timeout: float = 30.0,
        close_timeout: float = 10.0,
    ) -> None:
        self.url = url
        self.headers = headers or {}
        self.ssl_verify = ssl_verify
        self.open_timeout = open_timeout
        self.close_timeout = close_timeout

        self._ws: Optional[ClientConnection] = None
        self._outbox: Optional[asyncio.Queue] = None
        self._writer: Optional[asyncio.Task] = None
        self._closing = False
        self._send_error: Optional[BaseException] = None

    async def open(self) -> None:
        kwargs = {}
        if self.url.startswith("wss://") and not self.ssl_verify:
            ctx = ssl.create_default_context()
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
            kwargs["ssl"] = ctx

        logger.info(f"Connecting to {self.url}")
        self._ws = await connect(
            self.url,
            additional_headers=self.headers or None,
            open_timeout=self.open_timeout,
            close_timeout=self.close_timeout,
            **kwargs,
        )
        self._outbox = asyncio.Queue()
        self._writer = asyncio.create_task(self._write_loop(self._ws, self._outbox))
        logger.info(f"Connected to {self.url}")

    @property
    def is_open(self) -> bool:
        return (
            self._ws is not None
            and not self._closing
            and self._ws.state is State.OPEN
        )

    def send(self, data: bytes) -> bool:
        if not self.is_open or self._outbox is None:
            logger.debug(f"Dropping {len(data)} byte message, transport not open")
            return False
        self._outbox.put_nowait(data)
        return True

    def close(self) -> None:
        if self._closing or self._outbox is None:
            return
        self._closing = True
        # Sentinel: the writer flushes what is queued, then closes the socket
        self._outbox.put_nowait(None)

    async def events(self) -> AsyncIterator[TransportEvent]:
        ws = self._ws
        if ws is None:
            raise RuntimeError("Transport is not open")

        try:
            while True:
                try:
                    data = await ws.recv()
                except ConnectionClosed as e:
                    if self._send_error is not None:
                        yield TransportFailed(error=self._send_error)
                        return
                    # Clean means both close frames were exchanged
                    clean = e.rcvd is not None and e.sent is not None
                    code = e.rcvd.code if e.rcvd is not None else None
                    reason = e.rcvd.reason if e.rcvd is not None else ""
                    logger.info(f"Websocket closed (clean={clean}, code={code})")
                    yield TransportClosed(clean=clean, code=code, reason=reason)
                    return
                except Exception as e:
                    logger.error(f"Websocket receive failed: {e}")
                    yield TransportFailed(error=e)
                    return

                if isinstance(data, str):
                    data = data.encode("utf-8")
                yield MessageReceived(data=data)
        finally:
            self._closing = True
            await self._stop_writer()

    async def _write_loop(self, ws: ClientConnection, outbox: asyncio.Queue) -> None:
        while True:
            data = await outbox.get()
            if data is None:
                break
            try:
                await ws.send(data)
            except ConnectionClosed:
                logger.debug("Websocket send after close, stopping writer")
                return
            except Exception as e:
                logger.error(f"Websocket send failed: {e}")
                # No further sends; events() reports the error once the socket is down
                self._send_error = e
                self._closing = True
                break

        try:
            await ws.close()
        except Exception as e:
            logger.debug(f"Websocket close failed: {e}")

    async def _stop_writer(self) -> None:
        writer = self._writer
        if writer is None or writer.done():
            return
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
