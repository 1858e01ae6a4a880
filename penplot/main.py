#!/usr/bin/env python3
"""
Pen Plotter - Command Line Entry Point

Opens a session, reports the selected device and plot area, and optionally
streams an HP-GL file to the plotter.
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from .config import PlotterConfig, default_config, load_from_toml
from .controller import SessionController
from .encoder import parse_statements
from .errors import PlotterValidationError, TransportError
from .transport import EventKind, SessionEvent

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INVALID = 2
EXIT_TRANSPORT = 3


def _log_event(event: SessionEvent) -> None:
    if event.kind is EventKind.DATA:
        logger.info(f"Data: {event.data}")
    elif event.kind is EventKind.ERROR:
        logger.error(f"Session error: {event.error}")
    else:
        logger.info(f"Session {event.kind.value}" + (f": {event.data}" if event.data else ""))


def build_config(args: argparse.Namespace) -> PlotterConfig:
    cfg = load_from_toml(args.config) if args.config else default_config()
    serial = cfg.serial
    if args.port:
        serial = dataclasses.replace(serial, port=args.port)
    if args.hardware:
        serial = dataclasses.replace(serial, mock=False)
    session = dataclasses.replace(
        cfg.session,
        paper=args.paper or cfg.session.paper,
        orientation=args.orientation or cfg.session.orientation,
        model=args.model or cfg.session.model,
    )
    return PlotterConfig(serial=serial, session=session)


async def run(cfg: PlotterConfig, plot_file: Optional[Path] = None) -> None:
    """Run one plotting session."""
    controller = SessionController(cfg, observer=_log_event)
    geometry = await controller.start()
    try:
        profile = controller.profile
        logger.info(
            f"My plotter is a {profile.brand} {profile.model} "
            f"({profile.buffer} byte buffer, papers {', '.join(profile.paper_names)})"
        )
        logger.info(
            f"Plottable area {geometry.width}x{geometry.height} units, "
            f"scaled={geometry.scaled}"
        )
        if plot_file is not None:
            commands = parse_statements(plot_file.read_bytes())
            sent = await controller.plot(commands)
            logger.info(f"Sent {sent} commands from {plot_file}")
    finally:
        await controller.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="HP-GL pen plotter session")
    parser.add_argument("file", nargs="?", help="HP-GL file to plot")
    parser.add_argument("--config", help="Path to configuration file")
    parser.add_argument("--port", help="Serial port, e.g. /dev/ttyUSB0")
    parser.add_argument(
        "--hardware", action="store_true", help="Use the real serial port instead of the simulator"
    )
    parser.add_argument("--paper", help="Paper format, e.g. A4")
    parser.add_argument("--orientation", choices=["landscape", "portrait"])
    parser.add_argument("--model", help="Skip identification and use this model")
    args = parser.parse_args(argv)

    try:
        cfg = build_config(args)
        asyncio.run(run(cfg, Path(args.file) if args.file else None))
    except KeyboardInterrupt:
        logger.info("Stopped by user")
        return EXIT_OK
    except PlotterValidationError as e:
        logger.error(f"Invalid request: {e}")
        return EXIT_INVALID
    except TransportError as e:
        logger.error(f"Transport failure: {e}")
        return EXIT_TRANSPORT
    except (OSError, ValueError) as e:
        logger.error(f"Error encountered: {e}")
        return EXIT_FAILURE
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
