"""
Serial Link I/O Boundary

This module provides the SerialLink classes, which handle raw serial I/O with
a pen plotter. It abstracts away the hardware/simulation distinction and
provides a clean byte-level interface. Pacing, framing and session state live
in the transport session; links only move bytes.

I/O boundary class - handles all hardware interaction and connection management.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

from aioserial import AioSerial
from serial import EIGHTBITS, PARITY_NONE, STOPBITS_ONE, SerialException

from .config import SerialConfig
from .encoder import LABEL_TERMINATOR, STATEMENT_TERMINATOR
from .errors import SerialConnectionError

logger = logging.getLogger(__name__)


class SerialLink(ABC):
    """
    Abstract base class for a plotter serial link.

    Implementations handle hardware vs simulated communication.
    """

    @abstractmethod
    async def connect(self) -> None:
        """
        Connect to the serial port.

        Raises:
            SerialConnectionError: If connection fails
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """
        Disconnect from the serial port.

        Raises:
            SerialConnectionError: If disconnection fails
        """
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        """Check if serial port is connected."""
        pass

    @abstractmethod
    async def write(self, data: bytes) -> int:
        """
        Write bytes to the serial port.

        Returns:
            int: Number of bytes written (always len(data) on success)

        Raises:
            SerialConnectionError: If write operation fails
        """
        pass

    @abstractmethod
    async def read(self) -> bytes:
        """
        Read whatever inbound bytes are available.

        May return b"" when nothing arrived within the link timeout.

        Raises:
            SerialConnectionError: If read operation fails
        """
        pass


class HardwareSerialLink(SerialLink):
    """
    Hardware serial link using aioserial.

    Fixed 8N1 framing; RTS/CTS and XON/XOFF follow the configuration.
    """

    def __init__(self, config: SerialConfig):
        self.config = config
        self._serial: Optional[AioSerial] = None
        self._io_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Connect to hardware serial port."""
        async with self._io_lock:
            try:
                self._serial = AioSerial(
                    port=self.config.port,
                    baudrate=self.config.baudrate,
                    bytesize=EIGHTBITS,
                    parity=PARITY_NONE,
                    stopbits=STOPBITS_ONE,
                    timeout=self.config.timeout,
                    xonxoff=self.config.xonxoff,
                    rtscts=self.config.rtscts,
                )
                # Give the connection a moment to stabilize
                await asyncio.sleep(0.1)
                logger.info(
                    f"Connected to plotter on {self.config.port} @ {self.config.baudrate} baud"
                )

            except (SerialException, OSError, ValueError) as e:
                self._serial = None
                raise SerialConnectionError(f"Hardware serial connect failed: {e}") from e

    async def disconnect(self) -> None:
        """Disconnect from hardware serial port."""
        async with self._io_lock:
            if self._serial:
                try:
                    self._serial.cancel_read()
                    self._serial.close()
                    logger.info("Disconnected from hardware serial port")
                except (SerialException, OSError) as e:
                    raise SerialConnectionError(
                        f"Hardware serial disconnect failed: {e}"
                    ) from e
                finally:
                    self._serial = None

    def is_connected(self) -> bool:
        """Check if hardware serial port is connected."""
        return self._serial is not None

    async def write(self, data: bytes) -> int:
        """Write bytes to hardware serial port."""
        if not self._serial:
            raise SerialConnectionError("Not connected to hardware")

        try:
            bytes_written = await self._serial.write_async(data)
        except (SerialException, OSError) as e:
            raise SerialConnectionError(f"Hardware write failed: {e}") from e

        if bytes_written != len(data):
            raise SerialConnectionError(f"Short write: {bytes_written}/{len(data)} bytes")
        return bytes_written

    async def read(self) -> bytes:
        """Read available bytes from hardware serial port."""
        if not self._serial:
            raise SerialConnectionError("Not connected to hardware")

        try:
            return await self._serial.read_async(max(1, self._serial.in_waiting))
        except (SerialException, OSError) as e:
            raise SerialConnectionError(f"Hardware read failed: {e}") from e


class MockSerialLink(SerialLink):
    """
    Simulated plotter for testing and development.

    Models the device side of the link: a finite buffer that drains at a
    fixed rate, replies to output instructions, and records everything it
    receives so tests can check ordering and overflow.
    """

    def __init__(
        self,
        config: Optional[SerialConfig] = None,
        identity: Optional[str] = "7475A",
        buffer_size: Optional[int] = None,
        drain_rate: Optional[float] = None,
        responses: Optional[Dict[str, str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or SerialConfig(mock=True)
        self.buffer_size = buffer_size
        self.drain_rate = drain_rate
        self.responses: Dict[str, str] = dict(responses or {})
        if identity is not None:
            self.responses.setdefault("OI", identity)
        self.clock = clock

        self.fail_connect = False
        self.fail_writes = False

        self.received = bytearray()
        self.writes = 0
        self.fill = 0.0
        self.peak_fill = 0.0
        self.overflowed = False

        self._connected = False
        self._last_drain = clock()
        self._statement = ""
        self._inbound: "asyncio.Queue[object]" = asyncio.Queue()

    async def connect(self) -> None:
        """Simulate connecting to serial port."""
        await asyncio.sleep(0)
        if self.fail_connect:
            raise SerialConnectionError(f"[MOCK] Cannot open {self.config.port}")
        self._connected = True
        self._last_drain = self.clock()
        logger.info(f"[MOCK] Connected to serial port {self.config.port}")

    async def disconnect(self) -> None:
        """Simulate disconnecting from serial port."""
        await asyncio.sleep(0)
        self._connected = False
        logger.info("[MOCK] Disconnected from serial port")

    def is_connected(self) -> bool:
        """Check if mock serial port is connected."""
        return self._connected

    async def write(self, data: bytes) -> int:
        """Simulate the plotter receiving bytes."""
        if not self._connected:
            raise SerialConnectionError("Not connected to mock serial")
        if self.fail_writes:
            raise SerialConnectionError("[MOCK] Write failed")

        self._drain()
        self.fill += len(data)
        self.peak_fill = max(self.peak_fill, self.fill)
        if self.buffer_size is not None and self.fill > self.buffer_size:
            self.overflowed = True
            logger.warning(
                f"[MOCK] Device buffer overflow: {self.fill:.0f}/{self.buffer_size} bytes"
            )

        self.received += data
        self.writes += 1
        self._answer(data.decode("ascii", errors="replace"))
        logger.debug(f"[MOCK] Wrote {len(data)} bytes")
        await asyncio.sleep(0)
        return len(data)

    async def read(self) -> bytes:
        """Wait for simulated inbound bytes."""
        item = await self._inbound.get()
        if isinstance(item, Exception):
            raise item
        return item

    def inject(self, data: bytes) -> None:
        """Queue bytes as if the plotter had sent them."""
        self._inbound.put_nowait(bytes(data))

    def inject_error(self, error: Exception) -> None:
        """Make the next read fail with `error`."""
        self._inbound.put_nowait(error)

    def _drain(self) -> None:
        now = self.clock()
        if self.drain_rate is not None:
            self.fill = max(0.0, self.fill - (now - self._last_drain) * self.drain_rate)
        self._last_drain = now

    def _answer(self, text: str) -> None:
        """Reply to completed output instructions, e.g. OI; -> '7475A\\r'."""
        self._statement += text
        terminator = STATEMENT_TERMINATOR.decode()
        while terminator in self._statement:
            statement, self._statement = self._statement.split(terminator, 1)
            statement = statement.rsplit(LABEL_TERMINATOR, 1)[-1].strip()
            reply = self.responses.get(statement[:2].upper())
            if reply is not None and len(statement) == 2:
                self.inject(reply.encode("ascii") + b"\r")


def create_serial_link(
    config: SerialConfig, use_hardware: Optional[bool] = None
) -> SerialLink:
    """
    Factory function to create appropriate serial link implementation.

    Args:
        config: Serial configuration
        use_hardware: Force hardware (True) or mock (False). If None, uses config.mock

    Returns:
        SerialLink: Hardware or mock implementation
    """
    if use_hardware is None:
        use_hardware = not config.mock

    if use_hardware:
        logger.info("Creating hardware serial link")
        return HardwareSerialLink(config)
    else:
        logger.info("Creating mock serial link")
        return MockSerialLink(config)
