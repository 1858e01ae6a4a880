"""
Plotter capability catalogue.

Device characteristics for the supported HP-GL plotters: buffer size,
instruction set, paper formats (plottable extents, margins, scaling points)
and resolution. The catalogue is built once at import and is read-only
afterwards, so lookups are safe from any number of sessions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple

from .errors import InvalidArgument, PaperFormatUnavailable
from .flow_control import FLOW_CONTROL_NAMES

logger = logging.getLogger(__name__)

GENERIC_MODEL = "GENERIC"


class Orientation(Enum):
    """Paper orientation. Landscape puts the long side along x."""

    LANDSCAPE = "landscape"
    PORTRAIT = "portrait"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: "Orientation | str") -> "Orientation":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidArgument(
                f"Invalid orientation '{value}', expected 'landscape' or 'portrait'"
            ) from None


@dataclass(frozen=True)
class Point:
    x: int
    y: int


@dataclass(frozen=True)
class Margins:
    top: int = 0
    right: int = 0
    bottom: int = 0
    left: int = 0

    def __post_init__(self) -> None:
        if min(self.top, self.right, self.bottom, self.left) < 0:
            raise ValueError(f"Margins must be non-negative, got {self}")


NO_MARGINS = Margins()


@dataclass(frozen=True)
class ScalingPoints:
    p1: Point
    p2: Point

    def __post_init__(self) -> None:
        if self.p2.x <= self.p1.x or self.p2.y <= self.p1.y:
            raise ValueError(
                f"P2 ({self.p2.x},{self.p2.y}) must lie above and right of "
                f"P1 ({self.p1.x},{self.p1.y})"
            )


@dataclass(frozen=True)
class Resolution:
    """Device units per millimetre."""

    x: int = 40
    y: int = 40


@dataclass(frozen=True)
class PaperFormat:
    name: str
    long: int
    short: int
    ps_code: Optional[int] = None
    landscape_margins: Optional[Margins] = None
    portrait_margins: Optional[Margins] = None
    scaling_points: Optional[ScalingPoints] = None

    def __post_init__(self) -> None:
        if self.short <= 0:
            raise ValueError(f"Paper '{self.name}' extents must be positive")
        if self.long < self.short:
            raise ValueError(
                f"Paper '{self.name}' long side {self.long} < short side {self.short}"
            )

    def margins_for(self, orientation: Orientation) -> Margins:
        """Margins for an orientation; zero when the device does not declare any."""
        if orientation is Orientation.LANDSCAPE:
            margins = self.landscape_margins
        else:
            margins = self.portrait_margins
        return margins or NO_MARGINS


@dataclass(frozen=True)
class DeviceProfile:
    brand: str
    model: str
    buffer: int
    instructions: frozenset
    papers: Mapping[str, PaperFormat] = field(hash=False)
    resolution: Resolution = field(default_factory=Resolution)
    # Drain strategy the device wants when the configuration names none
    flow_control: Optional[str] = None

    def __post_init__(self) -> None:
        if self.buffer <= 0:
            raise ValueError(f"{self.model}: buffer size must be > 0")
        if self.flow_control is not None and self.flow_control not in FLOW_CONTROL_NAMES:
            raise ValueError(
                f"{self.model}: unknown flow control '{self.flow_control}'"
            )
        if not self.instructions:
            raise ValueError(f"{self.model}: instruction set must not be empty")
        if not self.papers:
            raise ValueError(f"{self.model}: at least one paper format is required")

    @property
    def paper_names(self) -> Tuple[str, ...]:
        return tuple(self.papers)

    def supports(self, opcode: str) -> bool:
        return opcode.upper() in self.instructions

    def __str__(self) -> str:
        return f"{self.brand} {self.model}"


def _profile(
    brand: str,
    model: str,
    buffer: int,
    instructions: str,
    papers: Iterable[PaperFormat],
    flow_control: Optional[str] = None,
) -> DeviceProfile:
    return DeviceProfile(
        brand=brand,
        model=model,
        buffer=buffer,
        instructions=frozenset(instructions.split()),
        papers=MappingProxyType({p.name: p for p in papers}),
        flow_control=flow_control,
    )


def _margins(top: int, right: int, bottom: int, left: int) -> Margins:
    return Margins(top=top, right=right, bottom=bottom, left=left)


def _scaling(x1: int, y1: int, x2: int, y2: int) -> ScalingPoints:
    return ScalingPoints(Point(x1, y1), Point(x2, y2))


# Instruction sets (two-letter HP-GL codes)
_FULL_INSTRUCTIONS = """
    AA AP AR AS BF BL CA CI CM CP CS CT CV DC DF DI DL DP DR DS DT EA EP ER ES
    EW FP FS FT GC GM IM IN IP IV IW KY LB LO LT NR OA OC OD OE OF OG OH OI OK
    OL OO OP OS OT OW PA PB PD PG PM PR PT PU RA RO RP RR SA SC SI SL SM SP SR
    SS TL UC UF VS WD WG XT YT
"""

_7440A_INSTRUCTIONS = """
    CA CP CS DC DF DI DP DR IM IN IP IW LB LT OA OC OD OE OF OH OI OO OP OS OW
    PA PD PR PU RO SA SC SI SL SM SP SR SS TL UC VS XT YT
"""

_7470A_INSTRUCTIONS = """
    AA AR CA CI CP CS DC DF DI DP DR DT IM IN IP IW LB LT OA OC OD OE OF OI OO
    OP OS OW PA PD PR PU SA SC SI SL SM SP SR SS TL UC VS XT YT
"""

_7475A_INSTRUCTIONS = """
    AA AR CA CI CP CS DC DF DI DP DR DT EA ER EW FT IM IN IP IW LB LT OA OC OD
    OE OF OH OI OO OP OS OW PA PD PR PS PT PU RA RO RR SA SC SI SL SM SP SR SS
    TL UC VS WG XT YT
"""

_758X_INSTRUCTIONS = """
    AA AP AR AS BL CA CC CI CM CP CS CT DC DF DI DL DP DR DS DT EA EP ER ES EW
    FP FS FT GP IM IN IP IV IW LB LO LT NR OA OC OD OE OF OH OI OL OO OP OS OT
    OW PA PB PD PM PR PT PU RA RO RR SA SC SG SI SL SM SP SR SS TL UC UF VS WG
    XT YT
"""

_7586B_INSTRUCTIONS = """
    AA AF AH AP AR AS BL CA CC CI CM CP CS CT DC DF DI DL DP DR DS DT EA EC EP
    ER ES EW FP FR FS FT GP IM IN IP IV IW LB LO LT NR OA OC OD OE OF OH OI OL
    OO OP OS OT OW PA PB PD PG PM PR PT PU RA RO RR SA SC SG SI SL SM SP SR SS
    TL UC UF VS WG XT YT
"""

# Nominal paper table, also used by devices whose papers were never measured
_NOMINAL_PAPERS = (
    PaperFormat("A", long=10170, short=7840),
    PaperFormat("B", long=16450, short=10170),
    PaperFormat("A4", long=10870, short=7600),
    PaperFormat("A3", long=15970, short=10870),
)

_7440A_SCALING = _scaling(250, 279, 10250, 7479)

CATALOGUE: Dict[str, DeviceProfile] = {
    GENERIC_MODEL: _profile(
        "Unknown", GENERIC_MODEL, 60, _FULL_INSTRUCTIONS, _NOMINAL_PAPERS
    ),
    # Paper size is selected by a hardware switch, not by PS.
    # The Graphics Enhancement Cartridge raises the buffer to 1024 bytes.
    "7440A": _profile(
        "HP",
        "7440A",
        60,
        _7440A_INSTRUCTIONS,
        (
            PaperFormat(
                "A",
                long=10280,
                short=7640,
                landscape_margins=_margins(640, 240, 360, 640),
                portrait_margins=_margins(240, 360, 640, 640),
                scaling_points=_7440A_SCALING,
            ),
            PaperFormat(
                "A4",
                long=10880,
                short=7640,
                landscape_margins=_margins(360, 420, 400, 560),
                portrait_margins=_margins(440, 400, 560, 360),
                scaling_points=_7440A_SCALING,
            ),
        ),
    ),
    "7470A": _profile(
        "HP",
        "7470A",
        255,
        _7470A_INSTRUCTIONS,
        (
            PaperFormat("A", long=10300, short=7650),
            PaperFormat("A4", long=10900, short=7650),
        ),
    ),
    "7475A": _profile(
        "HP",
        "7475A",
        1024,
        _7475A_INSTRUCTIONS,
        (
            PaperFormat(
                "A",
                long=10365,
                short=7962,
                ps_code=4,
                landscape_margins=_margins(562, 463, 112, 348),
                portrait_margins=_margins(348, 562, 463, 112),
                scaling_points=_scaling(250, 596, 10250, 7796),
            ),
            PaperFormat(
                "B",
                long=16640,
                short=10365,
                ps_code=0,
                landscape_margins=_margins(463, 112, 348, 562),
                portrait_margins=_margins(112, 348, 562, 463),
                scaling_points=_scaling(522, 259, 15722, 10259),
            ),
            PaperFormat(
                "A4",
                long=11040,
                short=7721,
                ps_code=4,
                scaling_points=_scaling(603, 521, 10603, 7721),
            ),
            PaperFormat(
                "A3",
                long=16158,
                short=11040,
                ps_code=0,
                scaling_points=_scaling(170, 602, 15370, 10602),
            ),
        ),
    ),
    "7550A": _profile("HP", "7550A", 12800, _FULL_INSTRUCTIONS, _NOMINAL_PAPERS),
    "7580A": _profile("HP", "7580A", 1024, _758X_INSTRUCTIONS, _NOMINAL_PAPERS),
    "7585A": _profile("HP", "7585A", 1024, _758X_INSTRUCTIONS, _NOMINAL_PAPERS),
    "7586B": _profile("HP", "7586B", 1024, _7586B_INSTRUCTIONS, _NOMINAL_PAPERS),
}


def normalize_model_id(model_id: Optional[str]) -> str:
    """Normalize a model identifier, e.g. a raw identity reply "7475A\\r"."""
    return (model_id or "").strip().upper()


class CapabilityRegistry:
    """
    Read-only catalogue of device profiles.

    Lookups never fail: unknown or missing identifiers resolve to the
    fallback profile.
    """

    def __init__(
        self,
        profiles: Mapping[str, DeviceProfile],
        fallback: str = GENERIC_MODEL,
    ):
        if fallback not in profiles:
            raise ValueError(f"Fallback profile '{fallback}' missing from catalogue")
        self._profiles = MappingProxyType(dict(profiles))
        self._fallback = self._profiles[fallback]

    @property
    def fallback(self) -> DeviceProfile:
        return self._fallback

    def models(self) -> Tuple[str, ...]:
        return tuple(self._profiles)

    def is_known(self, model_id: Optional[str]) -> bool:
        return normalize_model_id(model_id) in self._profiles

    def lookup(self, model_id: Optional[str]) -> DeviceProfile:
        """
        Get the profile for a model identifier.

        Args:
            model_id: Model identifier such as "7475A" (case and surrounding
                whitespace are ignored)

        Returns:
            DeviceProfile for the model, or the fallback profile when the
            identifier is unknown or absent
        """
        profile = self._profiles.get(normalize_model_id(model_id))
        if profile is None:
            logger.debug(
                f"Unknown model '{model_id}', using {self._fallback.model} profile"
            )
            return self._fallback
        return profile

    def paper_format(self, profile: DeviceProfile, name: str) -> PaperFormat:
        """
        Get a paper format supported by a device.

        Raises:
            PaperFormatUnavailable: If the device does not list the paper
        """
        paper = profile.papers.get(str(name).strip().upper())
        if paper is None:
            raise PaperFormatUnavailable(name, profile.model, profile.paper_names)
        return paper


REGISTRY = CapabilityRegistry(CATALOGUE)


def lookup(model_id: Optional[str]) -> DeviceProfile:
    """Get a device profile from the default registry."""
    return REGISTRY.lookup(model_id)


def paper_format(profile: DeviceProfile, name: str) -> PaperFormat:
    """Get a paper format from the default registry."""
    return REGISTRY.paper_format(profile, name)
