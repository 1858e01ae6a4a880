"""
Buffer-aware transport session.

Owns one open serial link and is the single writer of the outstanding-byte
counter: the bytes sent but not yet assumed consumed by the plotter. Writes
are paced so the counter never exceeds the device buffer, inbound bytes are
split into records and every lifecycle transition is reported to a single
observer as an ordered event.

States: Closed -> Opening -> Open -> Closing -> Closed, with Errored
reachable from Opening, Open or Closing on any link fault.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .capabilities import REGISTRY, DeviceProfile
from .errors import (
    BufferOverflow,
    SerialConnectionError,
    SessionClosing,
    SessionStateError,
    TransportError,
)
from .flow_control import DEFAULT_DRAIN_RATE, FlowControl, TimedDrain, create_flow_control
from .serial_link import SerialLink

logger = logging.getLogger(__name__)

# Longest unterminated inbound record kept before it is discarded
MAX_RECORD_BYTES = 1024


class SessionState(str, Enum):
    CLOSED = "Closed"
    OPENING = "Opening"
    OPEN = "Open"
    CLOSING = "Closing"
    ERRORED = "Errored"


class EventKind(str, Enum):
    OPENED = "opened"
    DATA = "data"
    DRAINED = "drained"
    DEGRADED = "degraded"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class SessionEvent:
    kind: EventKind
    data: Optional[str] = None
    error: Optional[BaseException] = None


@dataclass
class SessionStats:
    bytes_sent: int = 0
    writes: int = 0
    waits: int = 0
    peak_outstanding: int = 0
    unsent_on_close: int = 0


Observer = Callable[[SessionEvent], None]


class TransportSession:
    """
    One plotting session over one serial link.

    Sends are served in submission order. A send that does not fit in the
    free device buffer is written piecewise as capacity frees, so the
    device never holds more than `capacity` unconsumed bytes.
    """

    def __init__(
        self,
        link: SerialLink,
        flow_control: Optional[FlowControl] = None,
        observer: Optional[Observer] = None,
        profile: Optional[DeviceProfile] = None,
        close_timeout: float = 5.0,
        terminators: bytes = b"\r\n",
        clock: Callable[[], float] = time.monotonic,
        drain_rate: float = DEFAULT_DRAIN_RATE,
        max_record: int = MAX_RECORD_BYTES,
    ):
        self._link = link
        # Without an explicit strategy the bound profile may choose one
        self._flow_pinned = flow_control is not None
        self._flow = flow_control or TimedDrain(drain_rate)
        self._drain_rate = drain_rate
        self._max_record = max_record
        self._observer = observer
        self._profile = profile
        self._capacity = (profile or REGISTRY.fallback).buffer
        self.close_timeout = close_timeout
        self._clock = clock
        self._record_split = re.compile(b"[" + re.escape(terminators) + b"]")

        self._state = SessionState.CLOSED
        self._error: Optional[BaseException] = None
        self._outstanding = 0
        self._queued_bytes = 0
        self._pending_sends = 0
        self._aborted = False
        self._close_requested = False
        self._open_done = asyncio.Event()
        self._inbound = bytearray()
        self._reader_task: Optional[asyncio.Task] = None

        self._send_lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()

        self.stats = SessionStats()

    # Read-only views

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def profile(self) -> Optional[DeviceProfile]:
        return self._profile

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def outstanding(self) -> int:
        return self._outstanding

    @property
    def saturated(self) -> bool:
        return self._outstanding >= self._capacity

    @property
    def is_open(self) -> bool:
        return self._state is SessionState.OPEN

    def set_observer(self, observer: Optional[Observer]) -> None:
        self._observer = observer

    @property
    def flow_control(self) -> FlowControl:
        return self._flow

    def bind_profile(self, profile: DeviceProfile) -> None:
        """
        Bind the identified device; its buffer becomes the capacity bound.

        When no strategy was given explicitly, the profile's flow-control
        default replaces the timed estimate.
        """
        self._profile = profile
        self._capacity = profile.buffer
        if (
            not self._flow_pinned
            and profile.flow_control
            and profile.flow_control != self._flow.name
        ):
            self._flow = create_flow_control(profile.flow_control, self._drain_rate)
            self._flow.reset(self._clock())
        logger.info(
            f"Session bound to {profile} ({profile.buffer} byte buffer, "
            f"{self._flow.name} flow control)"
        )

    # Lifecycle

    async def open(self) -> "TransportSession":
        """
        Open the link and start delivering inbound records.

        Raises:
            SerialConnectionError: If the link cannot be established
            SessionStateError: If the session is not closed
        """
        if self._state is not SessionState.CLOSED:
            raise SessionStateError(f"Cannot open session in state {self._state.value}")

        self._set_state(SessionState.OPENING)
        self._close_requested = False
        self._open_done.clear()
        try:
            await self._link.connect()
        except SerialConnectionError as e:
            self._fail(e)
            self._open_done.set()
            raise

        self._outstanding = 0
        self._aborted = False
        self._inbound.clear()
        self._flow.reset(self._clock())
        self._set_state(SessionState.OPEN)
        self._reader_task = asyncio.create_task(self._read_loop())
        self._emit(SessionEvent(EventKind.OPENED))
        if self._close_requested:
            # A close arrived while connecting; it finishes once we return
            self._set_state(SessionState.CLOSING)
        self._open_done.set()
        return self

    async def close(self) -> None:
        """
        Close the session, flushing queued sends for at most close_timeout.

        Sends still queued after the timeout are released with
        SessionClosing; the close itself always completes. A close requested
        while the link is still connecting completes once the connect
        attempt finishes.
        """
        if self._state is SessionState.OPENING:
            logger.info("Close requested while opening; waiting for connect")
            self._close_requested = True
            await self._open_done.wait()
            if self._state is SessionState.CLOSING and self._close_requested:
                self._close_requested = False
                await self._finish_close()
                return

        if self._state in (SessionState.CLOSED, SessionState.CLOSING):
            return
        if self._state is SessionState.ERRORED:
            await self._release()
            return

        self._set_state(SessionState.CLOSING)
        await self._finish_close()

    async def _finish_close(self) -> None:
        unsent = 0
        if self._pending_sends:
            try:
                await asyncio.wait_for(self._idle.wait(), self.close_timeout)
            except asyncio.TimeoutError:
                unsent = self._queued_bytes
                self.stats.unsent_on_close = unsent
                logger.warning(
                    f"Close timed out after {self.close_timeout:g}s with "
                    f"{self._pending_sends} sends ({unsent} bytes) still queued"
                )

        self._aborted = True
        self._wakeup.set()

        try:
            await self._release()
        except SerialConnectionError as e:
            self._fail(e)
            raise

        if self._state is SessionState.CLOSING:
            self._set_state(SessionState.CLOSED)
            self._emit(
                SessionEvent(
                    EventKind.CLOSED, data=f"{unsent} bytes unsent" if unsent else None
                )
            )

    async def _release(self) -> None:
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        if self._link.is_connected():
            await self._link.disconnect()

    # Output

    async def send(self, data: bytes) -> None:
        """
        Queue bytes for the device and return once they are all written.

        Raises:
            SessionClosing: If a close was requested before the bytes went out
            SessionStateError: If the session is not open
            BufferOverflow: If buffer accounting failed to prevent an overflow
            SerialConnectionError: If the link write fails
        """
        self._check_accepting()
        if not data:
            return

        data = bytes(data)
        sent = 0
        self._pending_sends += 1
        self._queued_bytes += len(data)
        self._idle.clear()
        try:
            async with self._send_lock:
                while sent < len(data):
                    self._check_writable()
                    free = self._refresh()
                    if free <= 0 or self._flow.paused:
                        self.stats.waits += 1
                        deficit = min(len(data) - sent, self._capacity)
                        await self._wait(self._flow.wait_hint(deficit))
                        continue

                    piece = data[sent : sent + free]
                    await self._write(piece)
                    sent += len(piece)
                    self._queued_bytes -= len(piece)
        finally:
            self._queued_bytes -= len(data) - sent
            self._pending_sends -= 1
            if not self._pending_sends:
                self._idle.set()

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the device is assumed to have consumed everything sent.

        Returns:
            bool: True if drained, False if the timeout expired first
        """
        deadline = None if timeout is None else self._clock() + timeout
        while True:
            if self._state is SessionState.ERRORED:
                raise SessionStateError(f"Session errored: {self._error}") from self._error
            self._refresh()
            if self._outstanding == 0 and self._pending_sends == 0:
                self._emit(SessionEvent(EventKind.DRAINED))
                return True
            if self._state not in (SessionState.OPEN, SessionState.CLOSING):
                return False

            delay = self._flow.wait_hint(max(self._outstanding, 1))
            if deadline is not None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    return False
                delay = min(delay, remaining)
            await self._wait(delay)

    def notify(self, kind: EventKind, data: Optional[str] = None) -> None:
        """Emit an event on behalf of the session owner (e.g. degraded notices)."""
        self._emit(SessionEvent(kind, data=data))

    def _check_accepting(self) -> None:
        if self._state is SessionState.OPEN:
            return
        if self._state is SessionState.CLOSING:
            raise SessionClosing("Session is closing; send rejected")
        if self._state is SessionState.ERRORED:
            raise SessionStateError(f"Session errored: {self._error}") from self._error
        raise SessionStateError(f"Cannot send in state {self._state.value}")

    def _check_writable(self) -> None:
        if self._aborted:
            raise SessionClosing("Session closed before queued bytes were sent")
        if self._state is SessionState.ERRORED:
            raise SessionStateError(f"Session errored: {self._error}") from self._error
        if self._state not in (SessionState.OPEN, SessionState.CLOSING):
            raise SessionStateError(f"Cannot send in state {self._state.value}")

    def _refresh(self) -> int:
        """Apply the drain estimate; return free capacity in bytes."""
        consumed = self._flow.drained(self._outstanding, self._clock())
        if consumed:
            self._outstanding -= min(consumed, self._outstanding)
        return self._capacity - self._outstanding

    async def _wait(self, timeout: float) -> None:
        self._wakeup.clear()
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout)
        except asyncio.TimeoutError:
            pass

    async def _write(self, piece: bytes) -> None:
        n = len(piece)
        if self._outstanding + n > self._capacity:
            error = BufferOverflow(
                f"Write of {n} bytes would exceed device buffer "
                f"({self._outstanding}/{self._capacity} outstanding)"
            )
            self._fail(error)
            raise error

        self._outstanding += n
        self.stats.peak_outstanding = max(self.stats.peak_outstanding, self._outstanding)
        try:
            await self._link.write(piece)
        except SerialConnectionError as e:
            self._fail(e)
            raise

        self.stats.bytes_sent += n
        self.stats.writes += 1
        logger.debug(f"Wrote {n} bytes ({self._outstanding}/{self._capacity} outstanding)")

    # Input

    async def _read_loop(self) -> None:
        while True:
            try:
                data = await self._link.read()
            except SerialConnectionError as e:
                if self._state in (SessionState.OPEN, SessionState.CLOSING):
                    self._fail(e)
                return

            if not data:
                continue
            data = self._flow.filter_inbound(data)
            self._wakeup.set()
            if data:
                self._deliver(data)

    def _deliver(self, data: bytes) -> None:
        self._inbound += data
        *records, rest = self._record_split.split(bytes(self._inbound))
        if len(rest) > self._max_record:
            logger.warning(f"Discarding {len(rest)} bytes of unterminated inbound data")
            rest = b""
        self._inbound = bytearray(rest)
        for record in records:
            if record:
                text = record.decode("ascii", errors="replace")
                logger.debug(f"Received record {text!r}")
                self._emit(SessionEvent(EventKind.DATA, data=text))

    # Events and state

    def _set_state(self, state: SessionState) -> None:
        logger.debug(f"Session state {self._state.value} -> {state.value}")
        self._state = state

    def _fail(self, error: TransportError) -> None:
        if self._state is SessionState.ERRORED:
            return
        self._error = error
        self._set_state(SessionState.ERRORED)
        self._wakeup.set()
        logger.error(f"Session failed: {error}")
        self._emit(SessionEvent(EventKind.ERROR, error=error))

    def _emit(self, event: SessionEvent) -> None:
        if self._observer is None:
            return
        try:
            self._observer(event)
        except Exception as e:
            logger.error(f"Error in session observer for {event.kind.value}: {e}")
