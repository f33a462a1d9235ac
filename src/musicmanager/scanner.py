"""Directory walking, eligibility rules and media file discovery."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator

from musicmanager.config import Operation, OperationRequest


class MediaKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"
    ARCHIVE = "archive"


AUDIO_EXTENSIONS: frozenset[str] = frozenset({
    ".mp3", ".aac", ".ogg", ".opus", ".wav", ".flac", ".m4a",
})
VIDEO_EXTENSIONS: frozenset[str] = frozenset({".mp4", ".mov"})
MEDIA_EXTENSIONS: frozenset[str] = AUDIO_EXTENSIONS | VIDEO_EXTENSIONS
ARCHIVE_EXTENSION = ".7z"

# A directory holding this file is never walked.
MARKER_FILE = ".mmignore"

COMPRESSED_DIR = "compressed"
UNCOMPRESSED_DIR = "uncompressed"
CONVERTED_DIR = "converted"
CONVERTED_PREFIX = "converted_"
BUNDLE_NAME = "package.7z"


@dataclass(frozen=True)
class MediaFile:
    """A discovered media file, relative to the root of the operation."""

    path: Path
    relative_path: Path
    extension: str
    kind: MediaKind
    size_bytes: int


@dataclass(frozen=True)
class EligibilityRules:
    """What a walk accepts: extension allow-list plus exclusions."""

    extensions: frozenset[str]
    excluded_dirs: frozenset[str] = frozenset()
    excluded_prefixes: tuple[str, ...] = ()
    excluded_names: frozenset[str] = frozenset()

    def excludes_dir(self, name: str) -> bool:
        if name.startswith("."):
            return True
        lowered = name.lower()
        if lowered in self.excluded_dirs:
            return True
        return any(lowered.startswith(p) for p in self.excluded_prefixes)


def rules_for(request: OperationRequest) -> EligibilityRules:
    """Build the eligibility rules of the requested operation."""
    op = request.operation
    if op is Operation.COMPRESS:
        return EligibilityRules(
            extensions=MEDIA_EXTENSIONS,
            excluded_dirs=frozenset({COMPRESSED_DIR, UNCOMPRESSED_DIR}),
        )
    if op is Operation.UNCOMPRESS:
        return EligibilityRules(
            extensions=frozenset({ARCHIVE_EXTENSION}),
            excluded_dirs=frozenset({UNCOMPRESSED_DIR}),
            excluded_names=frozenset({BUNDLE_NAME}),
        )
    if op is Operation.CONVERT:
        return EligibilityRules(
            extensions=MEDIA_EXTENSIONS,
            excluded_dirs=frozenset({CONVERTED_DIR}),
            excluded_prefixes=(CONVERTED_PREFIX,),
        )
    return EligibilityRules(extensions=MEDIA_EXTENSIONS)


def kind_of(extension: str) -> MediaKind:
    if extension in VIDEO_EXTENSIONS:
        return MediaKind.VIDEO
    if extension == ARCHIVE_EXTENSION:
        return MediaKind.ARCHIVE
    return MediaKind.AUDIO


def is_eligible(path: Path, root: Path, rules: EligibilityRules) -> bool:
    """Return True if path, found under root, should be visited.

    Only directory components below root are checked against the exclusion
    rules, so a root that is itself named e.g. ``compressed`` still works.
    """
    name = path.name
    if name.startswith(".") or name == MARKER_FILE:
        return False
    if name.lower() in rules.excluded_names:
        return False
    try:
        relative = path.relative_to(root)
    except ValueError:
        return False
    if any(rules.excludes_dir(part) for part in relative.parts[:-1]):
        return False
    return path.suffix.lower() in rules.extensions


def media_file(path: Path, root: Path) -> MediaFile:
    """Describe a single file relative to root."""
    extension = path.suffix.lower()
    return MediaFile(
        path=path,
        relative_path=path.relative_to(root),
        extension=extension,
        kind=kind_of(extension),
        size_bytes=path.stat().st_size,
    )


def iter_media_files(root: Path, rules: EligibilityRules) -> Iterator[MediaFile]:
    """Walk root and yield eligible files, sorted by relative path.

    Excluded directories are pruned before descending, so their contents are
    never listed. Symlinked directories are not followed.
    """
    found: list[MediaFile] = []
    for dirpath, dirnames, filenames in os.walk(root, topdown=True):
        if MARKER_FILE in filenames:
            dirnames[:] = []
            continue
        dirnames[:] = sorted(d for d in dirnames if not rules.excludes_dir(d))
        current = Path(dirpath)
        for filename in filenames:
            path = current / filename
            if not path.is_file():
                continue
            if is_eligible(path, root, rules):
                found.append(media_file(path, root))

    found.sort(key=lambda f: f.relative_path)
    yield from found


def collect_targets(root: Path, rules: EligibilityRules) -> list[MediaFile]:
    """Return the files an operation should process.

    An explicit file target is returned as-is, whatever its extension.
    """
    if root.is_file():
        return [media_file(root, root.parent)]
    return list(iter_media_files(root, rules))
