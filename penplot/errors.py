"""
Error taxonomy for plotter sessions.

Validation errors are deterministic and caller-correctable: they are raised
before any bytes reach the wire and are never retried. Transport errors are
fatal to the session that raised them. ResponseTimeout is the only condition
the controller recovers from on its own (identity fallback).
"""


class PlotterError(Exception):
    """Base exception for all plotter errors."""

    pass


class PlotterValidationError(PlotterError, ValueError):
    """Base exception for validation errors."""

    pass


class UnsupportedInstruction(PlotterValidationError):
    """Raised when an opcode is not in the device's instruction set."""

    def __init__(self, opcode: str, model: str):
        super().__init__(f"Instruction '{opcode}' is not supported by {model}")
        self.opcode = opcode
        self.model = model


class InvalidArgument(PlotterValidationError):
    """Raised when an instruction argument cannot be put on the wire."""

    pass


class PaperFormatUnavailable(PlotterValidationError):
    """Raised when a paper format is not supported by the device."""

    def __init__(self, paper: str, model: str, available=()):
        message = f"Paper format '{paper}' is not available on {model}"
        if available:
            message += f" (available: {', '.join(available)})"
        super().__init__(message)
        self.paper = paper
        self.model = model


class GeometryInvalid(PlotterValidationError):
    """Raised when margins leave no plottable area."""

    pass


class TransportError(PlotterError):
    """Base exception for transport-level errors. Fatal to the session."""

    pass


class SerialConnectionError(TransportError):
    """Raised when serial connection operations fail."""

    pass


class BufferOverflow(TransportError):
    """Raised when a write would exceed the device buffer."""

    pass


class SessionStateError(TransportError):
    """Raised when an operation is attempted in the wrong session state."""

    pass


class SessionClosing(TransportError):
    """Raised to pending and new senders once a close has been requested."""

    pass


class ResponseTimeout(PlotterError):
    """Raised when the device does not answer a query in time."""

    pass
