"""
Plot geometry resolution.

Pure logic: given a device profile, a paper format name and an orientation,
computes the plottable area and the transform from user coordinates to
device units. No I/O.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

from .capabilities import (
    REGISTRY,
    CapabilityRegistry,
    DeviceProfile,
    Margins,
    Orientation,
    PaperFormat,
    ScalingPoints,
)
from .errors import GeometryInvalid

logger = logging.getLogger(__name__)

NO_SCALING_NOTICE = "no scaling points: user coordinates are taken as device units"


def round_half_away(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    if value >= 0:
        return int(math.floor(value + 0.5))
    return -int(math.floor(-value + 0.5))


@dataclass(frozen=True)
class PlotGeometry:
    paper: PaperFormat
    orientation: Orientation
    width: int
    height: int
    margins: Margins
    scaling_points: Optional[ScalingPoints] = None
    limitations: Tuple[str, ...] = ()

    @property
    def scaled(self) -> bool:
        """True when user coordinates are mapped through P1/P2."""
        return self.scaling_points is not None

    def scale(self, user_x: float, user_y: float) -> Tuple[int, int]:
        """
        Map a user-space point to device units.

        With scaling points, (0, 0) maps to P1 and (1, 1) maps to P2, with
        linear interpolation per axis. Without them the transform is the
        identity and the values are only rounded.
        """
        sp = self.scaling_points
        if sp is None:
            return round_half_away(user_x), round_half_away(user_y)
        return (
            round_half_away(sp.p1.x + user_x * (sp.p2.x - sp.p1.x)),
            round_half_away(sp.p1.y + user_y * (sp.p2.y - sp.p1.y)),
        )


def resolve(
    profile: DeviceProfile,
    paper_name: str,
    orientation: "Orientation | str",
    registry: CapabilityRegistry = REGISTRY,
) -> PlotGeometry:
    """
    Resolve the plot geometry for a paper format and orientation.

    Args:
        profile: Device profile
        paper_name: Paper format name, e.g. "A4"
        orientation: Orientation or its name

    Returns:
        PlotGeometry with plottable extents and user-to-device transform

    Raises:
        PaperFormatUnavailable: If the device does not support the paper
        GeometryInvalid: If the margins leave no plottable area
    """
    orientation = Orientation.parse(orientation)
    paper = registry.paper_format(profile, paper_name)
    margins = paper.margins_for(orientation)

    # Orientation decides which physical side runs along x
    if orientation is Orientation.LANDSCAPE:
        extent_x, extent_y = paper.long, paper.short
    else:
        extent_x, extent_y = paper.short, paper.long

    width = extent_x - margins.left - margins.right
    height = extent_y - margins.top - margins.bottom
    if width <= 0 or height <= 0:
        raise GeometryInvalid(
            f"{profile.model} paper {paper.name} ({orientation}): margins leave "
            f"no plottable area ({width}x{height})"
        )

    limitations: Tuple[str, ...] = ()
    if paper.scaling_points is None:
        limitations = (NO_SCALING_NOTICE,)
        logger.warning(f"{profile.model} paper {paper.name}: {NO_SCALING_NOTICE}")

    geometry = PlotGeometry(
        paper=paper,
        orientation=orientation,
        width=width,
        height=height,
        margins=margins,
        scaling_points=paper.scaling_points,
        limitations=limitations,
    )
    logger.debug(
        f"Resolved {profile.model} {paper.name} {orientation}: "
        f"plottable {width}x{height}, scaled={geometry.scaled}"
    )
    return geometry
