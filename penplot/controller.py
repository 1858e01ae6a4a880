"""
Session Controller - Policy/Orchestration Layer

This module contains the SessionController class, which orchestrates a
plotting session: it opens the transport, picks the device profile (identity
query with GENERIC fallback), resolves the plot geometry and streams encoded
commands through the transport in submission order.

Policy layer - uses pure classes (CapabilityRegistry, geometry, CommandEncoder)
and the I/O boundary (TransportSession over a SerialLink).
"""

import asyncio
import logging
from typing import Iterable, List, Optional, Tuple

from .capabilities import REGISTRY, CapabilityRegistry, DeviceProfile
from .config import PlotterConfig, default_config
from .encoder import Command, CommandEncoder
from .errors import (
    PlotterError,
    PlotterValidationError,
    ResponseTimeout,
    SessionClosing,
    SessionStateError,
    TransportError,
)
from .flow_control import create_flow_control
from .geometry import PlotGeometry, resolve
from .operations import OperationLike, expand
from .serial_link import SerialLink, create_serial_link
from .transport import EventKind, Observer, SessionEvent, TransportSession

logger = logging.getLogger(__name__)

IDENTITY_OPCODE = "OI"

# Unclaimed reply records kept for the next query
RESPONSE_BACKLOG = 16


class SessionController:
    """
    Policy/orchestration layer for one plotting session.

    This controller decides:
    - Which device profile applies (explicit, identified or GENERIC)
    - Which initialisation statements the device needs
    - How encoded statements are grouped into write chunks

    Uses pure classes for logic and the transport session for all wire I/O.
    """

    def __init__(
        self,
        config: Optional[PlotterConfig] = None,
        registry: CapabilityRegistry = REGISTRY,
        encoder: Optional[CommandEncoder] = None,
        session: Optional[TransportSession] = None,
        observer: Optional[Observer] = None,
        link: Optional[SerialLink] = None,
        use_hardware: Optional[bool] = None,
    ):
        """
        Initialize session controller with dependencies.

        Args:
            config: Plotter configuration (default: simulated link, A4 landscape)
            registry: Device catalogue
            encoder: Command encoder (default: new instance)
            session: Transport session (default: built from config)
            observer: Callback receiving session events
            link: Serial link for the default session (default: from config)
            use_hardware: Force hardware vs mock link (default: from config)
        """
        self.config = config or default_config()
        self.registry = registry
        self.encoder = encoder or CommandEncoder()

        sc = self.config.session
        self.session = session or TransportSession(
            link or create_serial_link(self.config.serial, use_hardware),
            flow_control=(
                create_flow_control(sc.flow_control, sc.drain_rate)
                if sc.flow_control
                else None
            ),
            close_timeout=sc.close_timeout,
            drain_rate=sc.drain_rate,
        )
        self.session.set_observer(self._on_event)
        self._observer = observer

        self._responses: "asyncio.Queue[str]" = asyncio.Queue(maxsize=RESPONSE_BACKLOG)
        self._profile: Optional[DeviceProfile] = None
        self._geometry: Optional[PlotGeometry] = None
        self.notices: List[str] = []

    @property
    def profile(self) -> Optional[DeviceProfile]:
        return self._profile

    @property
    def geometry(self) -> Optional[PlotGeometry]:
        return self._geometry

    def is_open(self) -> bool:
        return self.session.is_open

    async def __aenter__(self) -> "SessionController":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start(
        self,
        paper: Optional[str] = None,
        orientation: Optional[str] = None,
        model: Optional[str] = None,
        identify: Optional[bool] = None,
    ) -> PlotGeometry:
        """
        Open the session, select the device profile and prepare the paper.

        Args:
            paper: Paper format name (default: from config)
            orientation: "landscape" or "portrait" (default: from config)
            model: Force a model instead of querying the device
            identify: Query the device identity when no model is given

        Returns:
            PlotGeometry for the requested paper and orientation

        Raises:
            SerialConnectionError: If the link cannot be opened
            PaperFormatUnavailable: If the device does not support the paper
            GeometryInvalid: If the paper has no plottable area
        """
        sc = self.config.session
        paper = paper or sc.paper
        orientation = orientation or sc.orientation
        model = model or sc.model
        identify = sc.identify if identify is None else identify

        await self.session.open()
        logger.info("Session controller connected successfully")

        try:
            if model:
                profile = self.registry.lookup(model)
                if not self.registry.is_known(model):
                    self._degrade(f"unknown model '{model}'; using {profile.model} profile")
            elif identify:
                profile = await self.identify()
            else:
                profile = self.registry.fallback
                self._degrade(f"device not identified; using {profile.model} profile")

            self._profile = profile
            self.session.bind_profile(profile)

            geometry = resolve(profile, paper, orientation, self.registry)
            for limitation in geometry.limitations:
                self._degrade(limitation)
            self._geometry = geometry

            await self._send_commands(self._setup_commands(profile, geometry))
        except PlotterValidationError:
            await self.close()
            raise
        except TransportError as e:
            await self._abort(e)
            raise

        logger.info(
            f"Plotting on {profile} paper {geometry.paper.name} {geometry.orientation}: "
            f"{geometry.width}x{geometry.height} units"
        )
        return geometry

    async def identify(self) -> DeviceProfile:
        """
        Query the device identity and select its profile.

        Falls back to the GENERIC profile, with a degraded-capability notice,
        when the device stays silent or reports an unknown model.
        """
        timeout = self.config.session.identity_timeout
        try:
            reply = await self.query(
                IDENTITY_OPCODE, timeout=timeout, profile=self.registry.fallback
            )
        except ResponseTimeout:
            self._degrade(
                f"no identity reply within {timeout:g}s; "
                f"using {self.registry.fallback.model} profile"
            )
            return self.registry.fallback

        if not self.registry.is_known(reply):
            self._degrade(
                f"unrecognized identity '{reply}'; using {self.registry.fallback.model} profile"
            )
            return self.registry.fallback

        profile = self.registry.lookup(reply)
        logger.info(f"Identified plotter as {profile}")
        return profile

    async def query(
        self,
        opcode: str,
        timeout: Optional[float] = None,
        profile: Optional[DeviceProfile] = None,
    ) -> str:
        """
        Send an output instruction and wait for its reply record.

        Raises:
            UnsupportedInstruction: If the device does not support the query
            ResponseTimeout: If no reply arrives within the timeout
        """
        profile = profile or self._profile or self.registry.fallback
        statement = self.encoder.encode(profile, opcode)
        timeout = self.config.session.identity_timeout if timeout is None else timeout

        # Drop unsolicited records so the reply is matched to this query
        while not self._responses.empty():
            stale = self._responses.get_nowait()
            logger.debug(f"Discarding unsolicited record {stale!r}")

        await self.session.send(statement)
        try:
            reply = await asyncio.wait_for(self._responses.get(), timeout)
        except asyncio.TimeoutError:
            raise ResponseTimeout(
                f"No reply to {statement.decode('ascii')} within {timeout:g}s"
            ) from None
        return reply.strip()

    async def status(self) -> int:
        """Read the device status byte (OS)."""
        return self._parse_ints(await self.query("OS"), 1)[0]

    async def error_code(self) -> int:
        """Read the last HP-GL error number (OE)."""
        return self._parse_ints(await self.query("OE"), 1)[0]

    async def position(self) -> Tuple[int, int, int]:
        """Read the actual pen position and pen state (OA)."""
        x, y, pen = self._parse_ints(await self.query("OA"), 3)
        return x, y, pen

    async def hard_clip_limits(self) -> Tuple[int, int, int, int]:
        """Read the hard-clip limits (OH) as x1, y1, x2, y2."""
        x1, y1, x2, y2 = self._parse_ints(await self.query("OH"), 4)
        return x1, y1, x2, y2

    async def plot(self, operations: Iterable[OperationLike]) -> int:
        """
        Stream draw operations to the device in submission order.

        Every operation is encoded before the first byte is sent, so an
        unsupported instruction anywhere in the batch sends nothing.

        Returns:
            int: Number of commands sent

        Raises:
            SessionStateError: If the session was not started
            UnsupportedInstruction: If an operation needs an unsupported opcode
            TransportError: If the transport fails; the session is closed
        """
        profile, geometry = self._require_started()

        commands: List[Command] = []
        for operation in operations:
            commands.extend(expand(operation, geometry))

        await self._send_commands(commands, profile)
        logger.debug(f"Plotted {len(commands)} commands")
        return len(commands)

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until the device is assumed to have consumed all sent bytes."""
        return await self.session.drain(timeout)

    async def close(self) -> None:
        """Close the session; queued bytes are flushed for a bounded time."""
        await self.session.close()
        logger.info("Session controller disconnected")

    def _setup_commands(
        self, profile: DeviceProfile, geometry: PlotGeometry
    ) -> List[Command]:
        commands = [Command("IN")]
        if geometry.paper.ps_code is not None and profile.supports("PS"):
            commands.append(Command("PS", (geometry.paper.ps_code,)))
        return commands

    async def _send_commands(
        self, commands: List[Command], profile: Optional[DeviceProfile] = None
    ) -> None:
        profile = profile or self._profile or self.registry.fallback
        encoded = list(self.encoder.encode_many(profile, commands))

        try:
            for chunk in self.encoder.coalesce(encoded, self.config.session.chunk_size):
                await self.session.send(chunk)
        except SessionClosing:
            raise
        except TransportError as e:
            await self._abort(e)
            raise

    def _require_started(self) -> Tuple[DeviceProfile, PlotGeometry]:
        if self._profile is None or self._geometry is None:
            raise SessionStateError("Session not started; call start() first")
        return self._profile, self._geometry

    async def _abort(self, error: Exception) -> None:
        logger.error(f"Aborting session after transport failure: {error}")
        try:
            await self.session.close()
        except TransportError as close_error:
            logger.error(f"Closing failed session also failed: {close_error}")

    def _degrade(self, message: str) -> None:
        self.notices.append(message)
        logger.warning(f"Degraded capability: {message}")
        self.session.notify(EventKind.DEGRADED, message)

    def _on_event(self, event: SessionEvent) -> None:
        if event.kind is EventKind.DATA and event.data is not None:
            if self._responses.full():
                dropped = self._responses.get_nowait()
                logger.debug(f"Reply backlog full, dropping {dropped!r}")
            self._responses.put_nowait(event.data)
        if self._observer is not None:
            self._observer(event)

    @staticmethod
    def _parse_ints(reply: str, count: int) -> List[int]:
        try:
            values = [int(v) for v in reply.split(",")]
        except ValueError:
            values = []
        if len(values) != count:
            raise PlotterError(f"Unexpected reply {reply!r}, expected {count} integers")
        return values
