"""Size-versus-bitrate anomaly heuristic used by the scan operation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from musicmanager.capabilities import ProbedFacts

# Container overhead, padding and embedded artwork allowance.
HEADROOM = 1.5


class Classification(str, Enum):
    NORMAL = "normal"
    WEIRD = "weird"
    CORRUPTED = "corrupted"


@dataclass(frozen=True)
class Verdict:
    """Classification of one file plus the facts that produced it."""

    classification: Classification
    detail: str
    facts: ProbedFacts | None = None
    expected_bytes: float | None = None
    threshold_bytes: float | None = None


def expected_size(duration_secs: float, bitrate_bps: float) -> float:
    """Bytes a stream of bitrate_bps should occupy over duration_secs."""
    return duration_secs * bitrate_bps / 8


def describe(facts: ProbedFacts, threshold_bytes: float | None = None) -> str:
    sample_rate = f"{facts.sample_rate}Hz" if facts.sample_rate else "unknown"
    bitrate = f"{facts.bitrate_bps}bps" if facts.bitrate_bps else "unknown"
    duration = f"{facts.duration_secs}s" if facts.duration_secs is not None else "unknown"
    parts = [
        f"Container: {facts.container or 'unknown'}",
        f"Codec: {facts.codec or 'unknown'}",
        f"Sample Rate: {sample_rate}",
        f"Bitrate: {bitrate}",
        f"Duration: {duration}",
        f"Filesize: {facts.size_bytes} bytes",
    ]
    if threshold_bytes is not None:
        parts.append(f"Expected Threshold: {threshold_bytes:.2f} bytes")
    return ", ".join(parts) + "."


def classify(facts: ProbedFacts) -> Verdict:
    """Classify a successfully probed file as normal or weird.

    A file is weird when it is more than HEADROOM times larger than its
    duration and bitrate account for. Variable-bitrate streams may report no
    bitrate at all; such files cannot be evaluated and are flagged weird so
    they get a human look rather than passing silently.
    """
    duration = facts.duration_secs
    bitrate = facts.bitrate_bps
    if not duration or duration <= 0 or not bitrate or bitrate <= 0:
        missing = []
        if not duration or duration <= 0:
            missing.append("duration")
        if not bitrate or bitrate <= 0:
            missing.append("bitrate")
        return Verdict(
            classification=Classification.WEIRD,
            detail=f"Could not evaluate: no {' or '.join(missing)} reported. {describe(facts)}",
            facts=facts,
        )

    expected = expected_size(duration, bitrate)
    threshold = expected * HEADROOM
    classification = (
        Classification.WEIRD if facts.size_bytes > threshold else Classification.NORMAL
    )
    return Verdict(
        classification=classification,
        detail=describe(facts, threshold),
        facts=facts,
        expected_bytes=expected,
        threshold_bytes=threshold,
    )


def corrupted(reason: str) -> Verdict:
    """Verdict for a file the prober could not read."""
    return Verdict(
        classification=Classification.CORRUPTED,
        detail=f"Corrupted or unreadable: {reason}",
    )
