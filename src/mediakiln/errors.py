"""
Exception taxonomy for mediakiln.

Every error raised by the encoding control plane derives from MediakilnError so
callers can catch the whole family at one seam (the CLI does exactly that).
"""

from typing import Optional, Sequence


class MediakilnError(Exception):
    """Base class for all mediakiln errors."""


class InitializationError(MediakilnError):
    """The execution engine or an image codec failed to load."""


class UnsupportedFormatError(MediakilnError):
    """A format id has no mapped codec (or no quality knob for a size search)."""


class EncodeExecutionError(MediakilnError):
    """The engine reported a nonzero exit for an execution."""

    def __init__(self, message: str, returncode: int = 1, argv: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.returncode = returncode
        self.argv = list(argv or [])


class OutputMissingError(MediakilnError):
    """Execution reported success but the expected output was never written."""

    def __init__(self, name: str):
        super().__init__(f"Encoding failed: output file {name!r} not created")
        self.name = name


class ProbeParseError(MediakilnError):
    """Diagnostic text carried a marker whose value could not be parsed (non-fatal)."""


class JobCancelledError(MediakilnError):
    """A job was cancelled between passes."""
