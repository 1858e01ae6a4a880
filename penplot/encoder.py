"""
HP-GL Command Encoding

This module contains the CommandEncoder class, which builds HP-GL statements
and validates them against a device profile. It's a pure class with no I/O
dependencies: it checks whether an instruction is legal for a device, never
whether there is room to send it.

Statement format: <opcode>[arg{,arg}];   labels: LB<text><ETX>
Labels holding ETX: DT<c>;LB<text><c>DT;
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Sequence, Tuple, Union

from .capabilities import DeviceProfile
from .errors import InvalidArgument, UnsupportedInstruction
from .geometry import round_half_away

STATEMENT_TERMINATOR = b";"
LABEL_TERMINATOR = "\x03"
ARGUMENT_SEPARATOR = ","

LABEL_OPCODE = "LB"
DEFINE_TERMINATOR_OPCODE = "DT"

# Character size, direction and slant take ratios; everything else is integer
DECIMAL_OPCODES = frozenset({"SI", "SR", "DI", "DR", "SL"})

# Stand-in label terminators, tried in order, for text that contains ETX
_ALTERNATE_TERMINATORS = "~|^`@#$%&*"

Argument = Union[int, float, str]

_OPCODE_RE = re.compile(r"[A-Z]{2}$")
_INT_RE = re.compile(r"[+-]?\d+$")
_DEC_RE = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)$")


@dataclass(frozen=True)
class Command:
    """A single HP-GL instruction: opcode plus ordered arguments."""

    opcode: str
    args: Tuple[Argument, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "opcode", normalize_opcode(self.opcode))
        object.__setattr__(self, "args", tuple(self.args))

    def __str__(self) -> str:
        return self.opcode + ARGUMENT_SEPARATOR.join(str(a) for a in self.args)


def normalize_opcode(opcode: str) -> str:
    code = str(opcode).strip().upper()
    if not _OPCODE_RE.match(code):
        raise InvalidArgument(f"Opcode must be two letters, got '{opcode}'")
    return code


def _format_number(opcode: str, value: Union[int, float]) -> str:
    """Decimal integer; ratio instructions keep up to four decimals."""
    if isinstance(value, bool):
        raise InvalidArgument(f"Boolean is not a valid HP-GL argument: {value}")
    if isinstance(value, int):
        return str(value)
    if math.isnan(value) or math.isinf(value):
        raise InvalidArgument(f"Argument must be finite, got {value}")
    if float(value).is_integer():
        return str(int(value))
    if opcode not in DECIMAL_OPCODES:
        return str(round_half_away(value))
    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-", "-0") else "0"


def _format_string(opcode: str, value: str) -> str:
    # Single-character parameters (SM, DT) have no escape for the delimiters
    if STATEMENT_TERMINATOR.decode() in value or ARGUMENT_SEPARATOR in value:
        raise InvalidArgument(
            f"{opcode}: string argument {value!r} contains a statement delimiter"
        )
    return value


def _label_statement(profile: DeviceProfile, text: str) -> str:
    """
    Build an LB statement for arbitrary label text.

    Text containing ETX is escaped by switching the label terminator with
    DT for the one label and restoring the default right after it.
    """
    if LABEL_TERMINATOR not in text:
        return LABEL_OPCODE + text + LABEL_TERMINATOR

    if not profile.supports(DEFINE_TERMINATOR_OPCODE):
        raise InvalidArgument(
            f"Label text contains ETX and {profile.model} cannot redefine "
            f"the label terminator ({DEFINE_TERMINATOR_OPCODE} unsupported)"
        )
    terminator = next((c for c in _ALTERNATE_TERMINATORS if c not in text), None)
    if terminator is None:
        raise InvalidArgument("Label text leaves no free character to terminate it")

    end = STATEMENT_TERMINATOR.decode()
    return (
        f"{DEFINE_TERMINATOR_OPCODE}{terminator}{end}"
        f"{LABEL_OPCODE}{text}{terminator}"
        f"{DEFINE_TERMINATOR_OPCODE}{end}"
    )


class CommandEncoder:
    """
    Pure encoder for HP-GL statements.

    All methods take inputs and return encoded bytes; nothing is written.
    """

    TERMINATOR = STATEMENT_TERMINATOR

    def encode(
        self,
        profile: DeviceProfile,
        opcode: str,
        args: Sequence[Argument] = (),
    ) -> bytes:
        """
        Encode one instruction for a device.

        Args:
            profile: Target device profile
            opcode: Two-letter instruction code
            args: Numeric or string arguments, in order

        Returns:
            bytes: Self-terminated statement ready for transmission

        Raises:
            UnsupportedInstruction: If the device does not accept the opcode
            InvalidArgument: If an argument cannot be represented on the wire
        """
        code = normalize_opcode(opcode)
        if code not in profile.instructions:
            raise UnsupportedInstruction(code, profile.model)

        if code == LABEL_OPCODE:
            statement = _label_statement(profile, "".join(str(a) for a in args))
        else:
            parts = []
            for arg in args:
                if isinstance(arg, str):
                    parts.append(_format_string(code, arg))
                elif isinstance(arg, (int, float)):
                    parts.append(_format_number(code, arg))
                else:
                    raise InvalidArgument(
                        f"{code}: unsupported argument type {type(arg).__name__}"
                    )
            statement = code + ARGUMENT_SEPARATOR.join(parts) + self.TERMINATOR.decode()

        try:
            return statement.encode("ascii")
        except UnicodeEncodeError as e:
            raise InvalidArgument(f"{code}: arguments must be ASCII ({e})") from e

    def encode_command(self, profile: DeviceProfile, command: Command) -> bytes:
        return self.encode(profile, command.opcode, command.args)

    def encode_many(
        self, profile: DeviceProfile, commands: Iterable[Command]
    ) -> Iterator[bytes]:
        for command in commands:
            yield self.encode_command(profile, command)

    def coalesce(self, encoded: Iterable[bytes], chunk_size: int) -> Iterator[bytes]:
        """
        Join encoded statements into write chunks of at most chunk_size bytes.

        Order is preserved and statements are never split; a statement longer
        than chunk_size is yielded on its own.
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        pending = bytearray()
        for statement in encoded:
            if pending and len(pending) + len(statement) > chunk_size:
                yield bytes(pending)
                pending.clear()
            pending += statement
        if pending:
            yield bytes(pending)


def _parse_argument(token: str) -> Argument:
    token = token.strip()
    if _INT_RE.match(token):
        return int(token)
    if _DEC_RE.match(token):
        return float(token)
    return token


def parse_statements(data: Union[bytes, str]) -> List[Command]:
    """
    Parse HP-GL wire text back into commands.

    Whitespace and empty statements between instructions are ignored.
    Label text runs up to the current label terminator: ETX, or the
    character set by the last DT statement.
    """
    text = data.decode("ascii") if isinstance(data, (bytes, bytearray)) else data
    terminator = STATEMENT_TERMINATOR.decode()
    label_end = LABEL_TERMINATOR
    commands: List[Command] = []
    pos = 0
    end = len(text)

    while pos < end:
        ch = text[pos]
        if ch.isspace() or ch == terminator:
            pos += 1
            continue

        opcode = normalize_opcode(text[pos : pos + 2])
        pos += 2

        if opcode == LABEL_OPCODE:
            stop = text.find(label_end, pos)
            if stop < 0:
                raise InvalidArgument(f"Unterminated label: missing {label_end!r}")
            commands.append(Command(opcode, (text[pos:stop],)))
            pos = stop + 1
            continue

        if opcode == DEFINE_TERMINATOR_OPCODE:
            # DT takes the raw next character; a bare DT restores ETX
            if pos < end and text[pos] != terminator:
                label_end = text[pos]
                commands.append(Command(opcode, (label_end,)))
                pos += 1
            else:
                label_end = LABEL_TERMINATOR
                commands.append(Command(opcode))
            if pos < end and text[pos] == terminator:
                pos += 1
            continue

        stop = text.find(terminator, pos)
        if stop < 0:
            stop = end
        body = text[pos:stop].strip()
        args = tuple(_parse_argument(t) for t in body.split(ARGUMENT_SEPARATOR)) if body else ()
        commands.append(Command(opcode, args))
        pos = stop + 1

    return commands
