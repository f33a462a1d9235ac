"""Configuration loading, merging, and validation."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from musicmanager.presets import (
    CODEC_PARAMS,
    metadata_args,
    parse_tag_additions,
    parse_tag_removals,
)


class Operation(str, Enum):
    COMPRESS = "compress"
    UNCOMPRESS = "uncompress"
    CONVERT = "convert"
    SCAN = "scan"
    METADATA = "metadata"


PLACEMENT_KEEP = "keep"
PLACEMENT_REPLACE = "replace"
CONFLICT_SKIP = "skip"
CONFLICT_OVERWRITE = "overwrite"

_PLACEMENTS = (PLACEMENT_KEEP, PLACEMENT_REPLACE)
_CONFLICT_POLICIES = (CONFLICT_SKIP, CONFLICT_OVERWRITE)


@dataclass(frozen=True)
class ConvertOptions:
    """Effective options for the convert operation."""

    codec: str = "opus"
    metadata_mode: str = "keep"
    placement: str = PLACEMENT_KEEP
    on_conflict: str | None = None
    verbose: bool = True

    @property
    def replace(self) -> bool:
        return self.placement == PLACEMENT_REPLACE


@dataclass(frozen=True)
class TagEdit:
    """Tag removals and additions applied by the metadata operation."""

    removals: tuple[str, ...] = ()
    additions: tuple[tuple[str, str], ...] = ()

    def is_empty(self) -> bool:
        return not self.removals and not self.additions


@dataclass(frozen=True)
class OperationRequest:
    """Immutable configuration for a single run."""

    operation: Operation
    root: Path
    report_dir: Path = Path(".")
    package: bool = False
    workers: int = 4
    timeout_secs: float = 3600.0
    probe_timeout_secs: float = 30.0
    log_level: str = "INFO"
    convert: ConvertOptions = field(default_factory=ConvertOptions)
    tags: TagEdit = field(default_factory=TagEdit)


_DEFAULTS: dict[str, Any] = {
    "report_dir": ".",
    "package": False,
    "workers": 4,
    "timeout_secs": 3600.0,
    "probe_timeout_secs": 30.0,
    "log_level": "INFO",
    "codec": "opus",
    "metadata_mode": "keep",
    "placement": PLACEMENT_KEEP,
    "on_conflict": None,
    "verbose": True,
    "add": "",
    "remove": "",
}

# TOML section -> {key in section: key in the merged dict}
_SECTIONS: dict[str, dict[str, str]] = {
    "compress": {"package": "package"},
    "convert": {
        "to": "codec",
        "metadata": "metadata_mode",
        "placement": "placement",
        "on_conflict": "on_conflict",
        "verbose": "verbose",
    },
    "metadata": {"add": "add", "remove": "remove"},
}

_TOP_LEVEL = ("report_dir", "workers", "timeout_secs", "probe_timeout_secs", "log_level")


def load_config(path: Path) -> dict[str, Any]:
    """Read a TOML config file and return a dict."""
    with path.open("rb") as f:
        return tomllib.load(f)


def _flatten_file_config(file_config: dict[str, Any]) -> dict[str, Any]:
    flat: dict[str, Any] = {
        k: file_config[k] for k in _TOP_LEVEL if file_config.get(k) is not None
    }
    for section, keys in _SECTIONS.items():
        values = file_config.get(section, {})
        if not isinstance(values, dict):
            continue
        for key, target in keys.items():
            if values.get(key) is not None:
                flat[target] = values[key]
    return flat


def merge_config(
    operation: Operation | str,
    root: Path | str,
    file_config: dict[str, Any],
    cli_overrides: dict[str, Any],
) -> OperationRequest:
    """Merge defaults, file config, and CLI overrides into a validated request.

    Priority: defaults < file config < CLI overrides.
    """
    merged: dict[str, Any] = {**_DEFAULTS}
    merged.update(_flatten_file_config(file_config))
    merged.update({k: v for k, v in cli_overrides.items() if v is not None})

    merged["operation"] = Operation(operation)
    merged["root"] = Path(root).expanduser()
    merged["report_dir"] = Path(merged["report_dir"]).expanduser()

    return _validate(merged)


def _normalise_additions(value: Any) -> tuple[tuple[str, str], ...]:
    if isinstance(value, dict):
        return tuple((str(k), str(v)) for k, v in value.items())
    if isinstance(value, (list, tuple)):
        return parse_tag_additions(",".join(str(v) for v in value))
    return parse_tag_additions(str(value))


def _normalise_removals(value: Any) -> tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        return tuple(str(v).strip() for v in value if str(v).strip())
    return parse_tag_removals(str(value))


def _validate(merged: dict[str, Any]) -> OperationRequest:
    """Validate the merged config and return an OperationRequest."""
    errors: list[str] = []
    operation: Operation = merged["operation"]
    root: Path = merged["root"]

    if not root.exists():
        errors.append(f"path does not exist: {root}")
    elif operation is Operation.COMPRESS and not root.is_dir():
        errors.append(f"compress requires a directory: {root}")
    elif not (root.is_dir() or root.is_file()):
        errors.append(f"not a valid file or directory: {root}")

    try:
        workers = int(merged["workers"])
    except (TypeError, ValueError):
        workers = 0
    if workers < 1:
        errors.append("workers must be a positive integer")

    timeouts: dict[str, float] = {}
    for key in ("timeout_secs", "probe_timeout_secs"):
        try:
            timeouts[key] = float(merged[key])
        except (TypeError, ValueError):
            timeouts[key] = 0.0
        if timeouts[key] <= 0:
            errors.append(f"{key} must be greater than zero")

    codec = str(merged["codec"]).lower()
    if codec not in CODEC_PARAMS:
        supported = ", ".join(sorted(CODEC_PARAMS))
        errors.append(f"unsupported target codec '{codec}' (supported: {supported})")

    metadata_mode = str(merged["metadata_mode"]).lower()
    try:
        metadata_args(metadata_mode)
    except ValueError as e:
        errors.append(str(e))

    placement = str(merged["placement"]).lower()
    if placement not in _PLACEMENTS:
        errors.append(f"placement must be one of {', '.join(_PLACEMENTS)}")

    on_conflict = merged["on_conflict"]
    if on_conflict is not None:
        on_conflict = str(on_conflict).lower()
        if on_conflict not in _CONFLICT_POLICIES:
            errors.append(f"on_conflict must be one of {', '.join(_CONFLICT_POLICIES)}")

    tags = TagEdit()
    try:
        tags = TagEdit(
            removals=_normalise_removals(merged["remove"]),
            additions=_normalise_additions(merged["add"]),
        )
    except ValueError as e:
        errors.append(str(e))
    else:
        if operation is Operation.METADATA and tags.is_empty():
            errors.append("metadata requires at least one tag to add or remove")

    if errors:
        raise ValueError("Configuration errors:\n  " + "\n  ".join(errors))

    return OperationRequest(
        operation=operation,
        root=root.resolve(),
        report_dir=merged["report_dir"],
        package=bool(merged["package"]),
        workers=workers,
        timeout_secs=timeouts["timeout_secs"],
        probe_timeout_secs=timeouts["probe_timeout_secs"],
        log_level=str(merged["log_level"]),
        convert=ConvertOptions(
            codec=codec,
            metadata_mode=metadata_mode,
            placement=placement,
            on_conflict=on_conflict,
            verbose=bool(merged["verbose"]),
        ),
        tags=tags,
    )
