"""Static parameter tables: compression intensity, codec and metadata arguments."""

from __future__ import annotations

# 7-Zip -mx levels. Lossless and uncompressed formats still shrink; lossy
# containers barely do, so they get cheaper settings.
COMPRESSION_LEVELS: dict[str, int] = {
    ".flac": 9,
    ".wav": 9,
    ".mp3": 5,
    ".aac": 6,
    ".m4a": 6,
    ".ogg": 7,
    ".opus": 7,
    ".mp4": 4,
    ".mov": 4,
}
DEFAULT_COMPRESSION_LEVEL = 9
BUNDLE_COMPRESSION_LEVEL = 9

CODEC_PARAMS: dict[str, tuple[str, ...]] = {
    "opus": ("-c:a", "libopus", "-b:a", "192k"),
    "flac": ("-c:a", "flac", "-compression_level", "12"),
    "mp3": ("-c:a", "libmp3lame", "-qscale:a", "0"),
    "wav": ("-c:a", "pcm_s16le"),
    "ogg": ("-c:a", "libvorbis", "-qscale:a", "5"),
    "aac": ("-c:a", "aac", "-b:a", "192k"),
    "m4a": ("-c:a", "aac", "-b:a", "192k"),
    "mp4": ("-c:a", "aac", "-b:a", "192k"),
}

METADATA_KEEP = "keep"
METADATA_DROP = "drop"
_DROP_PREFIX = "drop:"


def compression_level(extension: str) -> int:
    """Return the 7-Zip intensity for a lowercase extension such as ``.mp3``."""
    return COMPRESSION_LEVELS.get(extension.lower(), DEFAULT_COMPRESSION_LEVEL)


def codec_extension(codec: str) -> str:
    return f".{codec.lower()}"


def codec_args(codec: str) -> list[str]:
    """Return ffmpeg encoder arguments for a target codec.

    Raises:
        ValueError: If the codec is not supported.
    """
    try:
        return list(CODEC_PARAMS[codec.lower()])
    except KeyError:
        raise ValueError(f"Unsupported target codec '{codec}'") from None


def metadata_args(mode: str) -> list[str]:
    """Translate a metadata mode into ffmpeg arguments.

    ``keep`` copies all tags, ``drop`` removes all of them and
    ``drop:tag,tag`` copies everything except the named tags.

    Raises:
        ValueError: If the mode is not recognised.
    """
    mode = mode.lower()
    if mode == METADATA_KEEP:
        return ["-map_metadata", "0"]
    if mode == METADATA_DROP:
        return ["-map_metadata", "-1"]
    if mode.startswith(_DROP_PREFIX):
        tags = parse_tag_removals(mode[len(_DROP_PREFIX):])
        if not tags:
            raise ValueError(f"Invalid metadata mode '{mode}': no tags named")
        args = ["-map_metadata", "0"]
        for tag in tags:
            args += ["-metadata", f"{tag}="]
        return args
    raise ValueError(f"Invalid metadata mode '{mode}'")


def parse_tag_removals(value: str) -> tuple[str, ...]:
    """Split ``"tag,tag"`` into tag names, dropping blanks."""
    return tuple(t.strip() for t in value.split(",") if t.strip())


def parse_tag_additions(value: str) -> tuple[tuple[str, str], ...]:
    """Split ``"key=value,key2=value2"`` into pairs.

    Raises:
        ValueError: If an item has no ``=`` or an empty key.
    """
    pairs: list[tuple[str, str]] = []
    for item in value.split(","):
        if not item.strip():
            continue
        key, sep, val = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"Malformed tag '{item}', expected key=value")
        pairs.append((key, val))
    return tuple(pairs)
