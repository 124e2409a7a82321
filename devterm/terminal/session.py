"""Remote terminal session over the device gateway.

A session opens a transport to the gateway, performs the ``new`` handshake
to obtain a session id, relays shell I/O, keeps the remote geometry in sync
and answers the gateway's health checks. All events for one session are
funnelled through ``TerminalSession.dispatch()`` on a single event loop, so
handlers never run concurrently and session state needs no locking.
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Optional, Union

from loguru import logger

from ..config import Config, config
from ..protocol import (
    DecodeError,
    Envelope,
    MessageType,
    PingProps,
    StatusProps,
    TerminalSizeProps,
    decode,
    encode,
)
from .dimensions import DimensionTracker, Dimensions, MeasurementUnavailable
from .healthcheck import HealthCheckMonitor, Scheduler, loop_scheduler
from .transport import Transport
from .types import (
    CancelRequested,
    CloseReason,
    DimensionTick,
    HandshakeRejected,
    HealthCheckExpired,
    HealthCheckTimeout,
    MessageReceived,
    SessionEvent,
    SessionState,
    TerminalError,
    TransportClosed,
    TransportError,
    TransportFailed,
    TransportOpened,
    UncleanClose,
)

MSG_ESTABLISHED = "Connection with the device established."
MSG_CLOSED = "Connection with the device closed."
MSG_DIED = "Connection with the device died."
MSG_HEALTH_CHECK = "Health check failed: connection with the device lost."


class TerminalSession:
    """Manages one remote shell session with a device.

    Collaborators are plain callables:

    - ``write(data)`` receives every decoded shell output body
    - ``notify(message, duration_ms)`` receives user-visible status strings
    - ``measure()`` returns the current terminal Dimensions
    - ``on_terminated()`` is called exactly once when the session ends
    """

    def __init__(
        self,
        device_id: str,
        transport: Transport,
        write: Callable[[bytes], None],
        notify: Callable[[str, int], None],
        measure: Callable[[], Dimensions],
        on_terminated: Optional[Callable[[], None]] = None,
        scheduler: Scheduler = loop_scheduler,
        settings: Optional[Config] = None,
    ) -> None:
        self.device_id = device_id
        self.transport = transport
        self.write = write
        self.notify = notify
        self.on_terminated = on_terminated
        self.settings = settings or config

        self.state = SessionState.IDLE
        self.session_id: Optional[str] = None
        self.dimensions: Optional[Dimensions] = None
        self.close_reason: Optional[CloseReason] = None
        self.error: Optional[TerminalError] = None

        self.created_at = datetime.now()
        self.last_activity = datetime.now()

        self.tracker = DimensionTracker(measure)
        self.health = HealthCheckMonitor(
            send=self._send,
            on_failure=lambda: self.dispatch(HealthCheckExpired()),
            scheduler=scheduler,
        )
        self._scheduler = scheduler

        self._connect_task: Optional[asyncio.Future] = None
        self._reader: Optional[asyncio.Task] = None
        self._poll_handle: Optional[Any] = None
        self._close_deadline: Optional[Any] = None
        self._terminated = False
        self._done = asyncio.Event()

    # --- Lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        """Open the transport and send the handshake.

        Returns once the session is handshaking (inbound traffic is then
        consumed by a background reader) or has already ended.
        """
        if self.state is not SessionState.IDLE:
            logger.warning(f"[{self.device_id}] start() ignored in state {self.state.value}")
            return

        self._set_state(SessionState.CONNECTING)
        task = asyncio.ensure_future(
            asyncio.wait_for(self.transport.open(), timeout=self.settings.timeouts.connect)
        )
        self._connect_task = task
        await asyncio.wait([task])
        self._connect_task = None

        if self.state.is_terminal:
            # Cancelled while connecting
            if not task.cancelled() and task.exception() is None:
                self.transport.close()
            return

        error = task.exception()
        if error is not None:
            self.dispatch(TransportFailed(error=error))
            return

        self.dispatch(TransportOpened())
        if not self.state.is_terminal:
            self._reader = asyncio.create_task(self._pump())

    async def run(self) -> None:
        """Run the session until it is closed or failed."""
        await self.start()
        await self.wait_closed()

    async def wait_closed(self) -> None:
        """Wait for the session to end and its reader to drain."""
        await self._done.wait()

        reader = self._reader
        if reader is None or reader.done() or reader is asyncio.current_task():
            return
        _, pending = await asyncio.wait([reader], timeout=self.settings.timeouts.close_grace)
        if pending:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

    def cancel(self) -> None:
        """Close the session on behalf of the user. Safe to call repeatedly."""
        self.dispatch(CancelRequested())

    def send_input(self, data: Union[bytes, str]) -> bool:
        """Send user keystrokes to the remote shell.

        Input is dropped unless the session is active.

        Returns:
            True if the input was handed to the transport
        """
        if self.state is not SessionState.ACTIVE:
            logger.debug(f"[{self.device_id}] Dropping input in state {self.state.value}")
            return False
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.last_activity = datetime.now()
        return self._send(Envelope.build(MessageType.SHELL, sid=self.session_id, body=data))

    def is_alive(self) -> bool:
        return not self.state.is_terminal

    def info(self) -> dict:
        """Snapshot of the session for display and diagnostics."""
        return {
            "device_id": self.device_id,
            "session_id": self.session_id,
            "state": self.state.value,
            "rows": self.dimensions.rows if self.dimensions else None,
            "cols": self.dimensions.cols if self.dimensions else None,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "idle_seconds": (datetime.now() - self.last_activity).total_seconds(),
            "error": str(self.error) if self.error else None,
        }

    # --- Dispatch ----------------------------------------------------------

    def dispatch(self, event: SessionEvent) -> None:
        """Apply one event to the session state machine.

        Never raises: a failing handler fails the session instead.
        """
        if self.state.is_terminal:
            logger.debug(
                f"[{self.device_id}] Ignoring {type(event).__name__} in {self.state.value}"
            )
            return

        try:
            self._handle(event)
        except Exception as e:
            logger.exception(f"[{self.device_id}] Error handling {type(event).__name__}")
            if not self.state.is_terminal:
                self._finish(SessionState.FAILED, f"Error: {e}", TerminalError(str(e)))

    def _handle(self, event: SessionEvent) -> None:
        if isinstance(event, MessageReceived):
            self._on_message(event.data)
        elif isinstance(event, DimensionTick):
            self._on_dimension_tick()
        elif isinstance(event, TransportOpened):
            self._on_opened()
        elif isinstance(event, TransportClosed):
            self._on_closed(event)
        elif isinstance(event, TransportFailed):
            self._on_failed(event)
        elif isinstance(event, HealthCheckExpired):
            self._on_health_check_expired()
        elif isinstance(event, CancelRequested):
            self._on_cancel()
        else:
            logger.warning(f"[{self.device_id}] Unknown event: {event!r}")

    def _on_opened(self) -> None:
        if self.state is not SessionState.CONNECTING:
            logger.debug(f"[{self.device_id}] Transport opened in state {self.state.value}")
            return

        self._notify(MSG_ESTABLISHED)

        try:
            dims = self.tracker.current_dimensions()
        except MeasurementUnavailable as e:
            geometry = self.settings.geometry
            dims = Dimensions(rows=geometry.rows, cols=geometry.cols)
            logger.warning(
                f"[{self.device_id}] Terminal not measurable ({e}), "
                f"using {dims.rows}x{dims.cols}"
            )
        self.dimensions = dims

        self._set_state(SessionState.HANDSHAKING)
        self._send(
            Envelope.build(
                MessageType.NEW,
                sid=None,
                props=TerminalSizeProps(height=dims.rows, width=dims.cols).to_props(),
            )
        )

    def _on_message(self, data: bytes) -> None:
        try:
            envelope = decode(data)
        except DecodeError as e:
            logger.warning(f"[{self.device_id}] Dropping malformed frame: {e}")
            return

        if not envelope.is_shell_protocol:
            logger.debug(
                f"[{self.device_id}] Ignoring protocol {envelope.header.proto} message"
            )
            return

        self.last_activity = datetime.now()
        typ = envelope.header.typ

        if typ is MessageType.NEW:
            self._on_new(envelope)
        elif typ is MessageType.SHELL and self.state is SessionState.ACTIVE:
            self.write(envelope.body or b"")
        elif typ is MessageType.PING and self.state is SessionState.ACTIVE:
            ping = PingProps.from_props(envelope.header.props)
            self.health.on_ping(ping.timeout, self.session_id)
        elif typ is MessageType.STOP and self.state in (
            SessionState.HANDSHAKING,
            SessionState.ACTIVE,
        ):
            logger.info(f"[{self.device_id}] Device requested stop")
            self._begin_closing(CloseReason.REMOTE_STOP)
        else:
            logger.debug(
                f"[{self.device_id}] Ignoring {typ.value} message in {self.state.value}"
            )

    def _on_new(self, envelope: Envelope) -> None:
        if self.state is SessionState.ACTIVE:
            logger.warning(
                f"[{self.device_id}] Unexpected 'new' message in active session "
                f"{self.session_id}, ignoring"
            )
            return
        if self.state is not SessionState.HANDSHAKING:
            logger.debug(f"[{self.device_id}] Ignoring 'new' in {self.state.value}")
            return

        if StatusProps.from_props(envelope.header.props).is_error:
            text = (envelope.body or b"").decode("utf-8", errors="replace")
            logger.error(f"[{self.device_id}] Device rejected session: {text}")
            self._finish(SessionState.FAILED, f"Error: {text}", HandshakeRejected(text))
            return

        if envelope.header.sid is None:
            logger.warning(f"[{self.device_id}] Handshake acknowledged without a session id")
        self.session_id = envelope.header.sid
        self._set_state(SessionState.ACTIVE)
        logger.info(f"[{self.device_id}] Shell session {self.session_id} active")
        self._schedule_poll()

    def _on_dimension_tick(self) -> None:
        if self.state is not SessionState.ACTIVE:
            return
        try:
            current = self.tracker.current_dimensions()
        except MeasurementUnavailable as e:
            logger.debug(f"[{self.device_id}] Skipping resize check: {e}")
            return

        if not self.tracker.has_changed(self.dimensions, current):
            return

        self.dimensions = current
        logger.debug(f"[{self.device_id}] Terminal resized to {current.rows}x{current.cols}")
        self._send(
            Envelope.build(
                MessageType.RESIZE,
                sid=self.session_id,
                props=TerminalSizeProps(height=current.rows, width=current.cols).to_props(),
            )
        )

    def _on_health_check_expired(self) -> None:
        if self.state is SessionState.ACTIVE:
            self._begin_closing(CloseReason.HEALTH_CHECK)

    def _on_cancel(self) -> None:
        if self.state in (SessionState.IDLE, SessionState.CONNECTING):
            self.close_reason = CloseReason.CANCELLED
            self._finish(SessionState.CLOSED, MSG_CLOSED)
        elif self.state in (SessionState.HANDSHAKING, SessionState.ACTIVE):
            self._begin_closing(CloseReason.CANCELLED)
        else:
            logger.debug(f"[{self.device_id}] Cancel ignored in {self.state.value}")

    def _on_closed(self, event: TransportClosed) -> None:
        if self.state is SessionState.CLOSING:
            if self.close_reason is CloseReason.HEALTH_CHECK:
                self._finish(
                    SessionState.CLOSED,
                    MSG_HEALTH_CHECK,
                    HealthCheckTimeout("no ping renewal before the deadline"),
                )
            else:
                self._finish(SessionState.CLOSED, MSG_CLOSED)
        elif self.state is SessionState.ACTIVE:
            if event.clean:
                self._finish(SessionState.CLOSED, MSG_CLOSED)
            else:
                self._finish(
                    SessionState.CLOSED,
                    MSG_DIED,
                    UncleanClose(f"code={event.code} reason={event.reason!r}"),
                )
        else:
            message = MSG_CLOSED if event.clean else MSG_DIED
            self._finish(
                SessionState.FAILED,
                message,
                TransportError(f"connection closed while {self.state.value}"),
            )

    def _on_failed(self, event: TransportFailed) -> None:
        if self.state is SessionState.CLOSING:
            self._on_closed(TransportClosed(clean=False, reason=str(event.error)))
            return
        detail = str(event.error) or type(event.error).__name__
        logger.error(f"[{self.device_id}] Transport error: {detail}")
        self._finish(SessionState.FAILED, f"WebSocket error: {detail}", TransportError(detail))

    # --- Transitions -------------------------------------------------------

    def _begin_closing(self, reason: CloseReason) -> None:
        self.close_reason = reason
        self._set_state(SessionState.CLOSING)

        if self.transport.is_open:
            self._send(Envelope.build(MessageType.STOP, sid=self.session_id))
        self._stop_timers()
        self.transport.close()

        self._close_deadline = self._scheduler(
            self.settings.timeouts.close_grace, self._on_close_grace_expired
        )

    def _on_close_grace_expired(self) -> None:
        self._close_deadline = None
        logger.warning(f"[{self.device_id}] Transport did not close in time")
        self.dispatch(TransportClosed(clean=False, reason="close grace expired"))

    def _finish(
        self,
        state: SessionState,
        message: str,
        error: Optional[TerminalError] = None,
    ) -> None:
        """Enter a terminal state: release everything, notify once, signal once."""
        self.error = error
        self._set_state(state)
        self._teardown()
        self._notify(message)

        if not self._terminated:
            self._terminated = True
            if self.on_terminated:
                try:
                    self.on_terminated()
                except Exception:
                    logger.exception(f"[{self.device_id}] on_terminated callback failed")
        self._done.set()

    def _teardown(self) -> None:
        self._stop_timers()
        if self._close_deadline is not None:
            self._close_deadline.cancel()
            self._close_deadline = None
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
        self.transport.close()

    def _stop_timers(self) -> None:
        if self._poll_handle is not None:
            self._poll_handle.cancel()
            self._poll_handle = None
        self.health.on_teardown()

    def _schedule_poll(self) -> None:
        self._poll_handle = self._scheduler(
            self.settings.timeouts.resize_poll, self._on_poll_timer
        )

    def _on_poll_timer(self) -> None:
        self._poll_handle = None
        self.dispatch(DimensionTick())
        if self.state is SessionState.ACTIVE:
            self._schedule_poll()

    # --- Helpers -----------------------------------------------------------

    async def _pump(self) -> None:
        try:
            async for event in self.transport.events():
                self.dispatch(event)
        except Exception as e:
            logger.exception(f"[{self.device_id}] Transport reader failed")
            self.dispatch(TransportFailed(error=e))
        finally:
            if not self.state.is_terminal:
                self.dispatch(TransportClosed(clean=False, reason="transport ended"))

    def _send(self, envelope: Envelope) -> bool:
        logger.debug(f"[{self.device_id}] -> {envelope.header.typ.value}")
        return self.transport.send(encode(envelope))

    def _notify(self, message: str) -> None:
        try:
            self.notify(message, self.settings.NOTIFY_DURATION_MS)
        except Exception:
            logger.exception(f"[{self.device_id}] Notifier failed for: {message}")

    def _set_state(self, new_state: SessionState) -> None:
        if new_state is not self.state:
            logger.debug(f"[{self.device_id}] {self.state.value} -> {new_state.value}")
        self.state = new_state
