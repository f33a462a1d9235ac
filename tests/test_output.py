"""Tests for output module."""

from __future__ import annotations

from pathlib import Path

import pytest

from musicmanager.errors import OutputError
from musicmanager.output import (
    STAGING_PREFIX,
    map_path,
    mirror_path,
    move_contents,
    staged_output,
    staging_dir,
)


# --- map_path / mirror_path ---


class TestMapPath:
    def test_replaces_extension(self, tmp_path: Path) -> None:
        src = tmp_path / "src"
        dest = map_path(src, src / "a" / "b" / "song.mp3", tmp_path / "out", ".opus")
        assert dest == tmp_path / "out" / "a" / "b" / "song.opus"

    def test_appends_extension(self, tmp_path: Path) -> None:
        src = tmp_path / "src"
        dest = map_path(src, src / "song.flac", src / "compressed", ".7z", append=True)
        assert dest == src / "compressed" / "song.flac.7z"

    def test_deterministic(self, tmp_path: Path) -> None:
        src = tmp_path / "src"
        first = map_path(src, src / "x" / "a.wav", tmp_path / "out", ".7z", append=True)
        second = map_path(src, src / "x" / "a.wav", tmp_path / "out", ".7z", append=True)
        assert first == second

    def test_append_keeps_same_stem_sources_apart(self, tmp_path: Path) -> None:
        src = tmp_path / "src"
        a = map_path(src, src / "song.mp3", tmp_path / "out", ".7z", append=True)
        b = map_path(src, src / "song.flac", tmp_path / "out", ".7z", append=True)
        assert a != b

    def test_replace_collides_on_stem(self, tmp_path: Path) -> None:
        src = tmp_path / "src"
        a = map_path(src, src / "song.mp3", tmp_path / "out", ".opus")
        b = map_path(src, src / "song.flac", tmp_path / "out", ".opus")
        assert a == b

    def test_file_outside_root_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            map_path(tmp_path / "src", tmp_path / "other" / "a.mp3", tmp_path, ".7z")

    def test_mirror_path_creates_parent(self, tmp_path: Path) -> None:
        src = tmp_path / "src"
        dest = mirror_path(src, src / "a" / "b" / "c.mp3", tmp_path / "out", ".7z", append=True)
        assert dest.parent.is_dir()
        assert not dest.exists()


# --- staged_output ---


class TestStagedOutput:
    def test_moves_result_into_place(self, tmp_path: Path) -> None:
        dest = tmp_path / "out" / "song.opus"

        with staged_output(dest) as tmp:
            assert tmp.parent != dest.parent
            assert tmp.name == dest.name
            tmp.write_bytes(b"encoded")

        assert dest.read_bytes() == b"encoded"
        assert not list(dest.parent.glob(f"{STAGING_PREFIX}*"))

    def test_error_leaves_destination_untouched(self, tmp_path: Path) -> None:
        dest = tmp_path / "song.opus"
        dest.write_bytes(b"original")

        with pytest.raises(RuntimeError):
            with staged_output(dest) as tmp:
                tmp.write_bytes(b"half written")
                raise RuntimeError("encoder crashed")

        assert dest.read_bytes() == b"original"
        assert not list(tmp_path.glob(f"{STAGING_PREFIX}*"))

    def test_missing_output_raises(self, tmp_path: Path) -> None:
        dest = tmp_path / "song.opus"

        with pytest.raises(OutputError, match="not produced"):
            with staged_output(dest):
                pass

        assert not dest.exists()

    def test_replaces_existing_destination(self, tmp_path: Path) -> None:
        dest = tmp_path / "song.flac"
        dest.write_bytes(b"old")

        with staged_output(dest) as tmp:
            tmp.write_bytes(b"new")

        assert dest.read_bytes() == b"new"


# --- staging_dir / move_contents ---


class TestMoveContents:
    def test_staging_dir_removed(self, tmp_path: Path) -> None:
        with staging_dir(tmp_path) as staging:
            (staging / "f").write_text("x")
            assert staging.name.startswith(STAGING_PREFIX)
        assert not staging.exists()

    def test_moves_files_and_directories(self, tmp_path: Path) -> None:
        source = tmp_path / "src"
        (source / "sub").mkdir(parents=True)
        (source / "a.mp3").write_bytes(b"a")
        (source / "sub" / "b.mp3").write_bytes(b"b")
        dest = tmp_path / "dest"

        moved = move_contents(source, dest)

        assert moved == [dest / "a.mp3", dest / "sub"]
        assert (dest / "a.mp3").read_bytes() == b"a"
        assert (dest / "sub" / "b.mp3").read_bytes() == b"b"
        assert not any(source.iterdir())

    def test_replaces_existing_and_merges_directories(self, tmp_path: Path) -> None:
        source = tmp_path / "src"
        (source / "sub").mkdir(parents=True)
        (source / "a.mp3").write_bytes(b"new")
        (source / "sub" / "b.mp3").write_bytes(b"b")
        dest = tmp_path / "dest"
        (dest / "sub").mkdir(parents=True)
        (dest / "a.mp3").write_bytes(b"old")
        (dest / "sub" / "keep.mp3").write_bytes(b"k")

        move_contents(source, dest)

        assert (dest / "a.mp3").read_bytes() == b"new"
        assert (dest / "sub" / "b.mp3").exists()
        assert (dest / "sub" / "keep.mp3").exists()

    def test_empty_source(self, tmp_path: Path) -> None:
        source = tmp_path / "src"
        source.mkdir()
        assert move_contents(source, tmp_path / "dest") == []
