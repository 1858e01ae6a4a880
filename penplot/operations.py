"""
Logical draw operations.

Pure mapping from caller-level operations to HP-GL commands. Coordinates are
user units and go through the plot geometry transform; with P1/P2 scaling
(0, 0) is P1 and (1, 1) is P2.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union

from .encoder import Command
from .geometry import PlotGeometry

UserPoint = Tuple[float, float]


class Operation(ABC):
    @abstractmethod
    def to_commands(self, geometry: PlotGeometry) -> List[Command]:
        """Expand the operation into device commands."""
        pass


def _scaled_args(points: Sequence[UserPoint], geometry: PlotGeometry) -> Tuple[int, ...]:
    args: List[int] = []
    for x, y in points:
        args.extend(geometry.scale(x, y))
    return tuple(args)


@dataclass(frozen=True)
class PenUp(Operation):
    """Lift the pen and move through the given points (PU)."""

    points: Tuple[UserPoint, ...] = ()

    def to_commands(self, geometry: PlotGeometry) -> List[Command]:
        return [Command("PU", _scaled_args(self.points, geometry))]


@dataclass(frozen=True)
class PenDown(Operation):
    """Lower the pen and draw through the given points (PD)."""

    points: Tuple[UserPoint, ...] = ()

    def to_commands(self, geometry: PlotGeometry) -> List[Command]:
        return [Command("PD", _scaled_args(self.points, geometry))]


@dataclass(frozen=True)
class Polyline(Operation):
    """Move to the first point with the pen up, then draw through the rest."""

    points: Tuple[UserPoint, ...]

    def __post_init__(self) -> None:
        if len(self.points) < 2:
            raise ValueError("A polyline needs at least two points")

    def to_commands(self, geometry: PlotGeometry) -> List[Command]:
        return [
            Command("PU", _scaled_args(self.points[:1], geometry)),
            Command("PD", _scaled_args(self.points[1:], geometry)),
            Command("PU"),
        ]


@dataclass(frozen=True)
class SelectPen(Operation):
    """Select a carousel pen; 0 returns the pen (SP)."""

    pen: int

    def __post_init__(self) -> None:
        if self.pen < 0:
            raise ValueError(f"Pen number must be >= 0, got {self.pen}")

    def to_commands(self, geometry: PlotGeometry) -> List[Command]:
        return [Command("SP", (self.pen,))]


@dataclass(frozen=True)
class Label(Operation):
    """Draw text at the current pen position (LB)."""

    text: str

    def to_commands(self, geometry: PlotGeometry) -> List[Command]:
        return [Command("LB", (self.text,))]


@dataclass(frozen=True)
class Raw(Operation):
    """A pre-built command, sent as-is."""

    command: Command

    def to_commands(self, geometry: PlotGeometry) -> List[Command]:
        return [self.command]


OperationLike = Union[Operation, Command]


def expand(operation: OperationLike, geometry: PlotGeometry) -> List[Command]:
    """Expand an operation or bare Command into commands."""
    if isinstance(operation, Command):
        return [operation]
    if isinstance(operation, Operation):
        return operation.to_commands(geometry)
    raise TypeError(f"Not a draw operation: {operation!r}")
