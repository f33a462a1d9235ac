"""Prober and Transcoder backed by ffprobe, ffmpeg and metaflac."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Sequence

from pydantic import BaseModel, Field, ValidationError as SchemaError, field_validator

from musicmanager.capabilities import ProbedFacts, require_executables, run_tool
from musicmanager.errors import CapabilityError, ProbeError
from musicmanager.output import staged_output

logger = logging.getLogger(__name__)

FFMPEG = "ffmpeg"
FFPROBE = "ffprobe"
METAFLAC = "metaflac"


class _ProbeModel(BaseModel):
    @field_validator("*", mode="before")
    @classmethod
    def _missing_values(cls, value: Any) -> Any:
        # ffprobe reports unknown numbers as "N/A".
        if isinstance(value, str) and value.strip() in ("", "N/A"):
            return None
        return value


class ProbeStream(_ProbeModel):
    """One stream entry of ffprobe's JSON output."""

    codec_type: str | None = None
    codec_name: str | None = None
    sample_rate: int | None = None
    bit_rate: int | None = None
    duration: float | None = None


class ProbeFormat(_ProbeModel):
    """The format section of ffprobe's JSON output."""

    format_name: str | None = None
    duration: float | None = None
    bit_rate: int | None = None


class ProbeDocument(BaseModel):
    """Schema for ``ffprobe -show_format -show_streams`` output."""

    streams: list[ProbeStream] = []
    format: ProbeFormat = Field(default_factory=ProbeFormat)


class FfprobeProber:
    """Extract container, codec, duration and bitrate facts with ffprobe."""

    def __init__(self, timeout: float = 30.0, executable: str = FFPROBE) -> None:
        self.timeout = timeout
        self.executable = executable

    def check_available(self) -> None:
        require_executables(self.executable)

    def probe(self, file: Path) -> ProbedFacts:
        """Probe a file.

        Raises:
            ProbeError: If the file is empty, unreadable as media, or ffprobe
                output cannot be parsed.
        """
        size_bytes = file.stat().st_size
        # Reject zero-length files without calling ffprobe
        if size_bytes == 0:
            raise ProbeError("Zero-length file")

        try:
            result = run_tool(
                [
                    self.executable,
                    "-v", "error",
                    "-print_format", "json",
                    "-show_format",
                    "-show_streams",
                    str(file),
                ],
                timeout=self.timeout,
            )
        except CapabilityError as e:
            raise ProbeError(f"ffprobe failed, file may be corrupt or unreadable ({e})") from e

        try:
            document = ProbeDocument.model_validate_json(result.stdout)
        except SchemaError as e:
            raise ProbeError("ffprobe returned invalid JSON") from e

        if not document.streams:
            raise ProbeError("No media stream found")

        return facts_from_document(document, size_bytes)


def facts_from_document(document: ProbeDocument, size_bytes: int) -> ProbedFacts:
    """Reduce a parsed ffprobe document to the facts the classifier needs.

    The bitrate is the sum of the per-stream bitrates. The format-level
    bitrate is ignored because ffprobe derives it from the file size.
    """
    audio = [s for s in document.streams if s.codec_type == "audio"]
    primary = audio[0] if audio else document.streams[0]

    rates = [s.bit_rate for s in document.streams if s.bit_rate]
    bitrate = sum(rates) if rates else None

    duration = document.format.duration
    if duration is None:
        duration = primary.duration

    return ProbedFacts(
        container=document.format.format_name,
        codec=primary.codec_name,
        sample_rate=primary.sample_rate,
        bitrate_bps=bitrate,
        duration_secs=duration,
        size_bytes=size_bytes,
    )


class FfmpegTranscoder:
    """Re-encode streams and edit tags with ffmpeg (metaflac for FLAC)."""

    def __init__(self, timeout: float = 3600.0) -> None:
        self.timeout = timeout

    def check_available(self) -> None:
        require_executables(FFMPEG)

    def transcode(
        self,
        source: Path,
        dest: Path,
        codec_args: Sequence[str],
        metadata_args: Sequence[str],
    ) -> None:
        run_tool(
            [
                FFMPEG, "-hide_banner", "-loglevel", "error",
                "-i", f"file:{source}",
                *metadata_args,
                *codec_args,
                "-y", f"file:{dest}",
            ],
            timeout=self.timeout,
        )

    def set_tags(
        self,
        file: Path,
        removals: Sequence[str],
        additions: Sequence[tuple[str, str]],
    ) -> None:
        """Remove then add/update tags in place."""
        if file.suffix.lower() == ".flac":
            for tag in removals:
                run_tool([METAFLAC, f"--remove-tag={tag}", str(file)], timeout=self.timeout)
            for key, value in additions:
                # metaflac appends; drop the old value first so this is an update
                run_tool([METAFLAC, f"--remove-tag={key}", str(file)], timeout=self.timeout)
                run_tool([METAFLAC, f"--set-tag={key}={value}", str(file)], timeout=self.timeout)
            return

        tag_args: list[str] = []
        for tag in removals:
            tag_args += ["-metadata", f"{tag}="]
        for key, value in additions:
            tag_args += ["-metadata", f"{key}={value}"]

        with staged_output(file) as tmp:
            run_tool(
                [
                    FFMPEG, "-hide_banner", "-loglevel", "error",
                    "-i", f"file:{file}",
                    "-map", "0",
                    *tag_args,
                    "-c", "copy",
                    "-y", f"file:{tmp}",
                ],
                timeout=self.timeout,
            )

    def strip_artwork(self, file: Path) -> None:
        """Remove embedded pictures. Only FLAC supports this; others are left alone."""
        if file.suffix.lower() != ".flac":
            return
        run_tool(
            [METAFLAC, "--remove", "--block-type=PICTURE", str(file)],
            timeout=self.timeout,
        )
