"""Archiver backed by the 7-Zip command line tool."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Sequence

from musicmanager.capabilities import require_executables, run_tool
from musicmanager.presets import BUNDLE_COMPRESSION_LEVEL

logger = logging.getLogger(__name__)

SEVEN_ZIP = "7z"


class SevenZipArchiver:
    """Create, extract and bundle ``.7z`` archives."""

    def __init__(self, timeout: float = 3600.0, executable: str = SEVEN_ZIP) -> None:
        self.timeout = timeout
        self.executable = executable

    def check_available(self) -> None:
        require_executables(self.executable)

    def create(self, source: Path, archive: Path, level: int) -> None:
        # Run from the source's directory so only its base name is stored.
        run_tool(
            [
                self.executable, "a",
                "-t7z",
                f"-mx={level}",
                "-mmt=on",
                str(archive.resolve()),
                source.name,
            ],
            timeout=self.timeout,
            cwd=source.parent,
        )

    def extract(self, archive: Path, dest_dir: Path) -> None:
        run_tool(
            [self.executable, "x", "-y", f"-o{dest_dir}", str(archive)],
            timeout=self.timeout,
        )

    def bundle(
        self,
        archives: Sequence[Path],
        container: Path,
        *,
        base_dir: Path | None = None,
    ) -> None:
        """Merge archives into one container.

        Members are stored relative to base_dir, the container's directory by
        default.
        """
        base = (base_dir or container.parent).resolve()
        members = [os.path.relpath(a.resolve(), base) for a in archives]
        logger.debug("Bundling %d archives into %s", len(members), container)
        run_tool(
            [
                self.executable, "a",
                "-t7z",
                f"-mx={BUNDLE_COMPRESSION_LEVEL}",
                str(container.resolve()),
                *members,
            ],
            timeout=self.timeout,
            cwd=base,
        )
