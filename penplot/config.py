# penplot/config.py
from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .capabilities import Orientation
from .flow_control import DEFAULT_DRAIN_RATE, FLOW_CONTROL_NAMES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SerialConfig:
    port: str = "/dev/ttyUSB0"
    baudrate: int = 9600
    timeout: float = 1.0
    mock: bool = True
    xonxoff: bool = False
    rtscts: bool = False

    def __post_init__(self) -> None:
        if self.baudrate <= 0:
            raise ValueError("Serial baudrate must be > 0")
        if self.timeout <= 0:
            raise ValueError("Serial timeout must be > 0")


@dataclass(frozen=True)
class SessionConfig:
    model: Optional[str] = None
    paper: str = "A4"
    orientation: str = "landscape"
    identify: bool = True
    identity_timeout: float = 2.0
    close_timeout: float = 5.0
    drain_rate: float = DEFAULT_DRAIN_RATE
    flow_control: Optional[str] = None  # None: device default, else timed
    chunk_size: int = 60

    def __post_init__(self) -> None:
        Orientation.parse(self.orientation)
        if self.identity_timeout <= 0:
            raise ValueError("identity_timeout must be > 0")
        if self.close_timeout < 0:
            raise ValueError("close_timeout must be >= 0")
        if self.drain_rate <= 0:
            raise ValueError("drain_rate must be > 0")
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        if self.flow_control is not None and (
            self.flow_control.lower() not in FLOW_CONTROL_NAMES
        ):
            raise ValueError(
                f"Invalid flow_control '{self.flow_control}', "
                f"expected one of {list(FLOW_CONTROL_NAMES)}"
            )


@dataclass(frozen=True)
class PlotterConfig:
    serial: SerialConfig = field(default_factory=SerialConfig)
    session: SessionConfig = field(default_factory=SessionConfig)


def load_from_toml(config_path: str | Path) -> PlotterConfig:
    """
    Load a PlotterConfig from a TOML file.

    Expected TOML structure:

    [serial]
    port = "/dev/ttyUSB0"
    baudrate = 9600
    timeout = 1.0
    mock = false
    xonxoff = false

    [session]
    model = "7475A"        # omit to identify the device
    paper = "A4"
    orientation = "landscape"
    identify = true
    identity_timeout = 2.0
    close_timeout = 5.0
    drain_rate = 120.0
    flow_control = "timed"  # timed|xonxoff, omit for the device default
    chunk_size = 60
    """
    p = Path(config_path)
    if not p.exists():
        raise FileNotFoundError(f"Configuration file not found: {p}")

    with p.open("rb") as f:
        data = tomllib.load(f)

    serial = data.get("serial") or {}
    session = data.get("session") or {}
    model = session.get("model")
    flow_control = session.get("flow_control")

    cfg = PlotterConfig(
        serial=SerialConfig(
            port=str(serial.get("port", "/dev/ttyUSB0")),
            baudrate=int(serial.get("baudrate", 9600)),
            timeout=float(serial.get("timeout", 1.0)),
            mock=bool(serial.get("mock", True)),
            xonxoff=bool(serial.get("xonxoff", False)),
            rtscts=bool(serial.get("rtscts", False)),
        ),
        session=SessionConfig(
            model=str(model) if model else None,
            paper=str(session.get("paper", "A4")),
            orientation=str(session.get("orientation", "landscape")),
            identify=bool(session.get("identify", True)),
            identity_timeout=float(session.get("identity_timeout", 2.0)),
            close_timeout=float(session.get("close_timeout", 5.0)),
            drain_rate=float(session.get("drain_rate", DEFAULT_DRAIN_RATE)),
            flow_control=str(flow_control) if flow_control else None,
            chunk_size=int(session.get("chunk_size", 60)),
        ),
    )

    logger.info(
        "Loaded PlotterConfig: serial=%s@%d (mock=%s), paper=%s %s, flow=%s",
        cfg.serial.port,
        cfg.serial.baudrate,
        cfg.serial.mock,
        cfg.session.paper,
        cfg.session.orientation,
        cfg.session.flow_control or "device default",
    )
    return cfg


def default_config() -> PlotterConfig:
    """A sensible local default: simulated link, A4 landscape, identity query on."""
    return PlotterConfig(
        serial=SerialConfig(port="/dev/ttyUSB0", baudrate=9600, timeout=1.0, mock=True),
        session=SessionConfig(),
    )
