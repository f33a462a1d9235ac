"""Error taxonomy shared by the capability clients and the dispatcher."""

from __future__ import annotations


class MusicManagerError(Exception):
    """Base class for every error raised by musicmanager."""

    kind = "error"


class ValidationError(MusicManagerError):
    """A file could not be read as media."""

    kind = "validation"


class ProbeError(ValidationError):
    """The prober failed to extract facts from a file."""


class CapabilityError(MusicManagerError):
    """An external tool invocation failed for one file."""

    kind = "capability"


class CapabilityUnavailableError(CapabilityError):
    """A required external tool is missing. Fatal for the whole run."""

    kind = "unavailable"


class ConflictError(MusicManagerError):
    """A policy decision is needed and none was supplied."""

    kind = "conflict"


class OutputError(MusicManagerError):
    """Creating, moving or renaming an output path failed."""

    kind = "io"
