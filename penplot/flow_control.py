"""
Buffer drain estimation strategies.

The device does not acknowledge consumed bytes, so the session infers free
buffer space from a flow-control strategy. Strategies only report how many
bytes they believe were consumed; the session owns the outstanding-byte
counter and applies the report.
"""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

XON = 0x11
XOFF = 0x13

DEFAULT_DRAIN_RATE = 120.0  # bytes per second, conservative for 9600 baud plotters


class FlowControl(ABC):
    """Strategy interface for estimating device buffer drain."""

    name = "abstract"

    @property
    def paused(self) -> bool:
        """True while the device has asked the host to stop sending."""
        return False

    @abstractmethod
    def reset(self, now: float) -> None:
        """Restart estimation, e.g. when a session opens."""
        pass

    @abstractmethod
    def drained(self, outstanding: int, now: float) -> int:
        """
        Report bytes assumed consumed by the device since the last call.

        Args:
            outstanding: Bytes currently believed to be in the device buffer
            now: Monotonic time in seconds

        Returns:
            int: Bytes consumed, never more than outstanding
        """
        pass

    @abstractmethod
    def wait_hint(self, deficit: int) -> float:
        """Seconds to wait before `deficit` more bytes are likely free."""
        pass

    def filter_inbound(self, data: bytes) -> bytes:
        """Strip any handshake bytes from inbound data."""
        return data


class TimedDrain(FlowControl):
    """Fixed drain-rate estimate based on elapsed time."""

    name = "timed"

    def __init__(self, bytes_per_second: float = DEFAULT_DRAIN_RATE):
        if bytes_per_second <= 0:
            raise ValueError("Drain rate must be > 0")
        self.bytes_per_second = bytes_per_second
        self._last = 0.0
        self._carry = 0.0

    def reset(self, now: float) -> None:
        self._last = now
        self._carry = 0.0

    def drained(self, outstanding: int, now: float) -> int:
        elapsed = max(now - self._last, 0.0)
        self._last = now
        if outstanding <= 0:
            self._carry = 0.0
            return 0

        budget = self._carry + elapsed * self.bytes_per_second
        consumed = min(int(budget), outstanding)
        self._carry = budget - consumed if consumed < outstanding else 0.0
        return consumed

    def wait_hint(self, deficit: int) -> float:
        needed = max(deficit - self._carry, 1.0)
        return needed / self.bytes_per_second


class XonXoff(TimedDrain):
    """
    Software handshake on top of the timed estimate.

    XOFF pauses writes; XON resumes them and means the device buffer has
    emptied. Handshake bytes never reach the inbound record stream.
    """

    name = "xonxoff"

    def __init__(self, bytes_per_second: float = DEFAULT_DRAIN_RATE):
        super().__init__(bytes_per_second)
        self._paused = False
        self._emptied = False

    @property
    def paused(self) -> bool:
        return self._paused

    def reset(self, now: float) -> None:
        super().reset(now)
        self._paused = False
        self._emptied = False

    def drained(self, outstanding: int, now: float) -> int:
        if self._emptied:
            self._emptied = False
            super().drained(0, now)
            return max(outstanding, 0)
        if self._paused:
            # Device is full: nothing drains until it says so
            self._last = now
            return 0
        return super().drained(outstanding, now)

    def filter_inbound(self, data: bytes) -> bytes:
        if XON not in data and XOFF not in data:
            return data
        kept = bytearray()
        for byte in data:
            if byte == XOFF:
                self._paused = True
                logger.debug("XOFF received, pausing output")
            elif byte == XON:
                self._paused = False
                self._emptied = True
                logger.debug("XON received, resuming output")
            else:
                kept.append(byte)
        return bytes(kept)


FLOW_CONTROL_NAMES = (TimedDrain.name, XonXoff.name)


def create_flow_control(
    name: str = TimedDrain.name, bytes_per_second: float = DEFAULT_DRAIN_RATE
) -> FlowControl:
    """
    Factory function to create a flow-control strategy.

    Args:
        name: "timed" or "xonxoff"
        bytes_per_second: Assumed device consumption rate

    Raises:
        ValueError: If the strategy name is unknown
    """
    strategies = {TimedDrain.name: TimedDrain, XonXoff.name: XonXoff}
    key = (name or TimedDrain.name).strip().lower()
    if key not in strategies:
        raise ValueError(
            f"Unknown flow control '{name}'. Supported: {', '.join(strategies)}"
        )
    logger.info(f"Using {key} flow control at {bytes_per_second:g} bytes/s")
    return strategies[key](bytes_per_second)
