"""Tests for presets module."""

from __future__ import annotations

import pytest

from musicmanager.presets import (
    DEFAULT_COMPRESSION_LEVEL,
    codec_args,
    codec_extension,
    compression_level,
    metadata_args,
    parse_tag_additions,
    parse_tag_removals,
)


class TestCompressionLevel:
    def test_lossless_gets_maximum(self) -> None:
        assert compression_level(".flac") == 9
        assert compression_level(".wav") == 9

    def test_lossy_gets_lighter_settings(self) -> None:
        assert compression_level(".mp3") == 5
        assert compression_level(".mp4") == 4

    def test_case_insensitive(self) -> None:
        assert compression_level(".MP3") == 5

    def test_unknown_extension_uses_default(self) -> None:
        assert compression_level(".xyz") == DEFAULT_COMPRESSION_LEVEL


class TestCodecArgs:
    def test_opus(self) -> None:
        assert codec_args("opus") == ["-c:a", "libopus", "-b:a", "192k"]

    def test_flac(self) -> None:
        assert codec_args("FLAC") == ["-c:a", "flac", "-compression_level", "12"]

    def test_unknown_codec(self) -> None:
        with pytest.raises(ValueError, match="Unsupported target codec"):
            codec_args("wma")

    def test_codec_extension(self) -> None:
        assert codec_extension("Opus") == ".opus"


class TestMetadataArgs:
    def test_keep(self) -> None:
        assert metadata_args("keep") == ["-map_metadata", "0"]

    def test_drop(self) -> None:
        assert metadata_args("drop") == ["-map_metadata", "-1"]

    def test_drop_selected(self) -> None:
        assert metadata_args("drop:comment, lyrics") == [
            "-map_metadata", "0",
            "-metadata", "comment=",
            "-metadata", "lyrics=",
        ]

    def test_drop_without_tags(self) -> None:
        with pytest.raises(ValueError, match="no tags named"):
            metadata_args("drop:")

    def test_unknown_mode(self) -> None:
        with pytest.raises(ValueError, match="Invalid metadata mode"):
            metadata_args("scrub")


class TestTagParsing:
    def test_removals_strip_blanks(self) -> None:
        assert parse_tag_removals(" comment,, lyrics ") == ("comment", "lyrics")

    def test_additions(self) -> None:
        assert parse_tag_additions("artist=Nina,year=1965") == (
            ("artist", "Nina"),
            ("year", "1965"),
        )

    def test_addition_value_may_contain_equals(self) -> None:
        assert parse_tag_additions("comment=a=b") == (("comment", "a=b"),)

    def test_addition_empty_value_allowed(self) -> None:
        assert parse_tag_additions("comment=") == (("comment", ""),)

    @pytest.mark.parametrize("value", ["artist", "=value", "artist=x,bogus"])
    def test_malformed_addition(self, value: str) -> None:
        with pytest.raises(ValueError, match="Malformed tag"):
            parse_tag_additions(value)
