"""Shared test fixtures for musicmanager."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Iterator, Sequence

import pytest
import tomli_w

from musicmanager.capabilities import ProbedFacts
from musicmanager.config import Operation, OperationRequest, merge_config
from musicmanager.errors import CapabilityError, CapabilityUnavailableError, ProbeError
from musicmanager.pipeline import Capabilities


# ---------------------------------------------------------------------------
# Fake capabilities
# ---------------------------------------------------------------------------


class FakeArchiver:
    """Archiver writing a JSON "archive" of {member name: latin-1 text}."""

    def __init__(self, fail_on: Sequence[str] = ()) -> None:
        self.fail_on = set(fail_on)
        self.available = True
        self.created: list[tuple[str, int]] = []
        self.extracted: list[Path] = []
        self.bundled: list[list[str]] = []
        self._lock = threading.Lock()

    def check_available(self) -> None:
        if not self.available:
            raise CapabilityUnavailableError("Required tool(s) not found on PATH: 7z")

    def create(self, source: Path, archive: Path, level: int) -> None:
        if source.name in self.fail_on:
            raise CapabilityError("7z exited with status 2")
        _write_archive(archive, {source.name: source.read_bytes()})
        with self._lock:
            self.created.append((source.name, level))

    def extract(self, archive: Path, dest_dir: Path) -> None:
        if archive.name in self.fail_on:
            raise CapabilityError("7z exited with status 2")
        members = json.loads(archive.read_text(encoding="utf-8"))
        for name, text in members.items():
            target = dest_dir / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(text.encode("latin-1"))
        with self._lock:
            self.extracted.append(archive)

    def bundle(
        self,
        archives: Sequence[Path],
        container: Path,
        *,
        base_dir: Path | None = None,
    ) -> None:
        base = base_dir or container.parent
        members = {os.path.relpath(a, base): a.read_bytes() for a in archives}
        _write_archive(container, members)
        self.bundled.append(sorted(members))


def _write_archive(path: Path, members: dict[str, bytes]) -> None:
    path.write_text(
        json.dumps({k: v.decode("latin-1") for k, v in members.items()}),
        encoding="utf-8",
    )


class FakeTranscoder:
    """Transcoder that prefixes content instead of encoding."""

    def __init__(self, fail_on: Sequence[str] = ()) -> None:
        self.fail_on = set(fail_on)
        self.available = True
        self.transcoded: list[tuple[Path, list[str], list[str]]] = []
        self.tagged: list[tuple[Path, tuple[str, ...], tuple[tuple[str, str], ...]]] = []
        self.stripped: list[str] = []
        self.strip_error = False
        self._lock = threading.Lock()

    def check_available(self) -> None:
        if not self.available:
            raise CapabilityUnavailableError("Required tool(s) not found on PATH: ffmpeg")

    def transcode(
        self,
        source: Path,
        dest: Path,
        codec_args: Sequence[str],
        metadata_args: Sequence[str],
    ) -> None:
        if source.name in self.fail_on:
            raise CapabilityError("ffmpeg exited with status 1")
        dest.write_bytes(b"converted:" + source.read_bytes())
        with self._lock:
            self.transcoded.append((source, list(codec_args), list(metadata_args)))

    def set_tags(
        self,
        file: Path,
        removals: Sequence[str],
        additions: Sequence[tuple[str, str]],
    ) -> None:
        if file.name in self.fail_on:
            raise CapabilityError("metaflac exited with status 1")
        with self._lock:
            self.tagged.append((file, tuple(removals), tuple(additions)))

    def strip_artwork(self, file: Path) -> None:
        if self.strip_error:
            raise CapabilityError("metaflac error: not found")
        with self._lock:
            self.stripped.append(file.name)


class FakeProber:
    """Prober returning fixed facts, or failing for chosen file names."""

    def __init__(
        self,
        duration: float | None = 100.0,
        bitrate: int | None = 128_000,
        corrupt: Sequence[str] = (),
    ) -> None:
        self.duration = duration
        self.bitrate = bitrate
        self.corrupt = set(corrupt)
        self.available = True

    def check_available(self) -> None:
        if not self.available:
            raise CapabilityUnavailableError("Required tool(s) not found on PATH: ffprobe")

    def probe(self, file: Path) -> ProbedFacts:
        if file.name in self.corrupt:
            raise ProbeError("ffprobe failed, file may be corrupt or unreadable")
        return ProbedFacts(
            container="mp3",
            codec="mp3",
            sample_rate=44100,
            bitrate_bps=self.bitrate,
            duration_secs=self.duration,
            size_bytes=file.stat().st_size,
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_input_dir(tmp_path: Path) -> Path:
    """Create a temporary input directory."""
    d = tmp_path / "library"
    d.mkdir()
    return d


@pytest.fixture
def report_dir(tmp_path: Path) -> Path:
    d = tmp_path / "reports"
    d.mkdir()
    return d


@pytest.fixture
def caps() -> Capabilities:
    return Capabilities(
        archiver=FakeArchiver(),
        transcoder=FakeTranscoder(),
        prober=FakeProber(),
    )


@pytest.fixture
def make_request(report_dir: Path) -> Any:
    """Build a validated OperationRequest with test-friendly defaults."""

    def _make(operation: Operation, root: Path, **overrides: Any) -> OperationRequest:
        overrides.setdefault("report_dir", str(report_dir))
        return merge_config(operation, root, {}, overrides)

    return _make


@pytest.fixture
def sample_config_file(tmp_path: Path) -> Path:
    """Write a sample config TOML file and return its path."""
    config_path = tmp_path / "mm.toml"
    data = {
        "workers": 2,
        "convert": {"to": "flac", "on_conflict": "skip"},
    }
    config_path.write_bytes(tomli_w.dumps(data).encode())
    return config_path


@pytest.fixture
def reset_logging() -> Iterator[None]:
    """Close and remove root handlers installed by setup_logging."""
    yield
    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()

