"""Interfaces of the external tools the dispatcher calls out to."""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

from musicmanager.errors import CapabilityError, CapabilityUnavailableError

logger = logging.getLogger(__name__)

_STDERR_TAIL = 500

# Tools currently running, so a forced shutdown can stop them.
_running: set[subprocess.Popen[str]] = set()
_running_lock = threading.Lock()


@dataclass(frozen=True)
class ProbedFacts:
    """Container and stream facts extracted from one file."""

    container: str | None
    codec: str | None
    sample_rate: int | None
    bitrate_bps: int | None
    duration_secs: float | None
    size_bytes: int


class Archiver(Protocol):
    def check_available(self) -> None: ...

    def create(self, source: Path, archive: Path, level: int) -> None: ...

    def extract(self, archive: Path, dest_dir: Path) -> None: ...

    def bundle(
        self,
        archives: Sequence[Path],
        container: Path,
        *,
        base_dir: Path | None = None,
    ) -> None: ...


class Transcoder(Protocol):
    def check_available(self) -> None: ...

    def transcode(
        self,
        source: Path,
        dest: Path,
        codec_args: Sequence[str],
        metadata_args: Sequence[str],
    ) -> None: ...

    def set_tags(
        self,
        file: Path,
        removals: Sequence[str],
        additions: Sequence[tuple[str, str]],
    ) -> None: ...

    def strip_artwork(self, file: Path) -> None: ...


class Prober(Protocol):
    def check_available(self) -> None: ...

    def probe(self, file: Path) -> ProbedFacts: ...


def require_executables(*names: str) -> None:
    """Verify that every named tool is on PATH.

    Raises:
        CapabilityUnavailableError: Naming every missing tool.
    """
    missing = [name for name in names if shutil.which(name) is None]
    if missing:
        raise CapabilityUnavailableError(
            f"Required tool(s) not found on PATH: {', '.join(missing)}"
        )


def _communicate(
    cmd: list[str],
    *,
    timeout: float,
    cwd: Path | None,
) -> subprocess.CompletedProcess[str]:
    # Own session: a terminal Ctrl-C reaches mm only, never in-flight tools.
    # Tool stderr is not always UTF-8 (ffprobe echoes raw file bytes).
    proc = subprocess.Popen(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        encoding="utf-8",
        errors="replace",
        cwd=cwd,
        start_new_session=True,
    )
    with _running_lock:
        _running.add(proc)
    try:
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()
            raise
    finally:
        with _running_lock:
            _running.discard(proc)
    return subprocess.CompletedProcess(cmd, proc.returncode, stdout, stderr)


def terminate_running() -> int:
    """Send SIGTERM to every tool still running and return how many there were."""
    with _running_lock:
        procs = list(_running)
    for proc in procs:
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            pass
    if procs:
        logger.warning("Terminated %d running tool(s)", len(procs))
    return len(procs)


def run_tool(
    cmd: Sequence[str],
    *,
    timeout: float,
    cwd: Path | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run an external tool and return the completed process.

    Raises:
        CapabilityError: On timeout, OS error, or non-zero exit status.
    """
    logger.debug("Running: %s", " ".join(str(c) for c in cmd))
    try:
        result = _communicate([str(c) for c in cmd], timeout=timeout, cwd=cwd)
    except subprocess.TimeoutExpired as e:
        raise CapabilityError(f"{cmd[0]} timed out after {timeout:.0f}s") from e
    except OSError as e:
        raise CapabilityError(f"{cmd[0]} error: {e}") from e

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()[-_STDERR_TAIL:]
        message = f"{cmd[0]} exited with status {result.returncode}"
        if stderr:
            message = f"{message}: {stderr}"
        raise CapabilityError(message)
    return result
