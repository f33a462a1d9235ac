"""Output path mirroring and staged (atomic) writes."""

from __future__ import annotations

import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from musicmanager.errors import OutputError

STAGING_PREFIX = ".mm-staging-"


def map_path(
    source_root: Path,
    file: Path,
    dest_root: Path,
    new_extension: str,
    *,
    append: bool = False,
) -> Path:
    """Mirror file's position under source_root onto dest_root.

    The final extension is replaced by new_extension, or kept and extended
    when append is True (``a/b.flac`` -> ``a/b.flac.7z``). Appending never
    maps two distinct sources to the same destination; replacing only
    collides for sources that differ by extension alone.
    """
    relative = file.relative_to(source_root)
    if append:
        relative = relative.with_name(relative.name + new_extension)
    else:
        relative = relative.with_suffix(new_extension)
    return dest_root / relative


def mirror_path(
    source_root: Path,
    file: Path,
    dest_root: Path,
    new_extension: str,
    *,
    append: bool = False,
) -> Path:
    """Like map_path, but also create the destination's parent directory."""
    dest = map_path(source_root, file, dest_root, new_extension, append=append)
    ensure_dir(dest.parent)
    return dest


def ensure_dir(path: Path) -> Path:
    """Create path and its parents. Safe when several workers race on it."""
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OutputError(f"Cannot create directory {path}: {e}") from e
    return path


@contextmanager
def staged_output(dest: Path) -> Iterator[Path]:
    """Yield a temporary path for dest and move it into place on success.

    The temporary file lives in a hidden staging directory beside dest, so the
    final rename stays on one filesystem. On any error dest is left untouched.
    """
    ensure_dir(dest.parent)
    staging = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=dest.parent))
    tmp = staging / dest.name
    try:
        yield tmp
        if not tmp.is_file():
            raise OutputError(f"Expected output was not produced: {dest}")
        try:
            tmp.replace(dest)
        except OSError as e:
            raise OutputError(f"Cannot move output into place: {dest}: {e}") from e
    finally:
        shutil.rmtree(staging, ignore_errors=True)


@contextmanager
def staging_dir(parent: Path) -> Iterator[Path]:
    """Yield a hidden scratch directory under parent, removed afterwards."""
    ensure_dir(parent)
    staging = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=parent))
    try:
        yield staging
    finally:
        shutil.rmtree(staging, ignore_errors=True)


def move_contents(source_dir: Path, dest_dir: Path) -> list[Path]:
    """Move every entry of source_dir into dest_dir, replacing existing files.

    Returns the destination paths of the moved entries.
    """
    ensure_dir(dest_dir)
    moved: list[Path] = []
    for entry in sorted(source_dir.iterdir()):
        target = dest_dir / entry.name
        try:
            if entry.is_dir() and target.is_dir():
                shutil.copytree(entry, target, dirs_exist_ok=True)
                shutil.rmtree(entry)
            else:
                os.replace(entry, target)
        except OSError as e:
            raise OutputError(f"Cannot move {entry.name} into {dest_dir}: {e}") from e
        moved.append(target)
    return moved

