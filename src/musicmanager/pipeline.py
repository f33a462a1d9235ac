"""Operation dispatcher: walk eligible files and apply one handler per file."""

from __future__ import annotations

import logging
import shutil
import tempfile
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Iterable

from musicmanager.capabilities import Archiver, Prober, Transcoder
from musicmanager.classifier import classify, corrupted
from musicmanager.config import (
    CONFLICT_OVERWRITE,
    CONFLICT_SKIP,
    Operation,
    OperationRequest,
)
from musicmanager.errors import (
    CapabilityError,
    ConflictError,
    MusicManagerError,
    OutputError,
    ProbeError,
)
from musicmanager.output import (
    ensure_dir,
    map_path,
    mirror_path,
    move_contents,
    staged_output,
    staging_dir,
)
from musicmanager.presets import (
    codec_args,
    codec_extension,
    compression_level,
    metadata_args,
)
from musicmanager.reporter import Outcome, RunReport, Status
from musicmanager.scanner import (
    ARCHIVE_EXTENSION,
    BUNDLE_NAME,
    COMPRESSED_DIR,
    CONVERTED_PREFIX,
    UNCOMPRESSED_DIR,
    MediaFile,
    collect_targets,
    media_file,
    rules_for,
)

logger = logging.getLogger(__name__)

# Called with the conflicting file and the target codec; True means overwrite.
ConflictResolver = Callable[[MediaFile, str], bool]
OutcomeCallback = Callable[[Outcome], None]


@dataclass(frozen=True)
class Capabilities:
    """The external tools one run may call."""

    archiver: Archiver
    transcoder: Transcoder
    prober: Prober


_REQUIRED: dict[Operation, tuple[str, ...]] = {
    Operation.COMPRESS: ("archiver",),
    Operation.UNCOMPRESS: ("archiver",),
    Operation.CONVERT: ("prober", "transcoder"),
    Operation.SCAN: ("prober",),
    Operation.METADATA: ("transcoder",),
}


def check_capabilities(request: OperationRequest, caps: Capabilities) -> None:
    """Fail before any file is touched if a tool the operation needs is missing.

    Raises:
        CapabilityUnavailableError: If a required tool is unavailable.
    """
    for name in _REQUIRED[request.operation]:
        getattr(caps, name).check_available()


@dataclass
class RunContext:
    """Per-run state shared by the workers."""

    request: OperationRequest
    caps: Capabilities
    report: RunReport
    stop_event: threading.Event = field(default_factory=threading.Event)
    on_outcome: OutcomeCallback | None = None
    resolve_conflict: ConflictResolver | None = None
    prompt_lock: threading.Lock = field(default_factory=threading.Lock)


@dataclass(frozen=True)
class Work:
    """One unit of work: a file and the handler that processes it."""

    file: MediaFile
    handler: Callable[[MediaFile], Outcome]


def run_operation(
    request: OperationRequest,
    caps: Capabilities,
    report: RunReport,
    *,
    stop_event: threading.Event | None = None,
    on_outcome: OutcomeCallback | None = None,
    resolve_conflict: ConflictResolver | None = None,
) -> RunReport:
    """Run the requested operation and record one outcome per eligible file.

    Per-file failures are recorded and never stop the run. A missing tool
    aborts the run before any file is processed.
    """
    check_capabilities(request, caps)
    ctx = RunContext(
        request=request,
        caps=caps,
        report=report,
        stop_event=stop_event or threading.Event(),
        on_outcome=on_outcome,
        resolve_conflict=resolve_conflict,
    )
    _DISPATCH[request.operation](ctx)
    return report


def execute(ctx: RunContext, work: Iterable[Work]) -> list[Outcome]:
    """Run work items on a bounded worker pool and record their outcomes.

    Outcomes are appended to the report by the calling thread as each file
    finishes, so the report has a single writer.
    """
    items = list(work)
    outcomes: list[Outcome] = []
    if not items:
        logger.info("No eligible files found under %s", ctx.request.root)
        return outcomes

    logger.info("Processing %d files with %d workers", len(items), ctx.request.workers)
    with ThreadPoolExecutor(
        max_workers=ctx.request.workers, thread_name_prefix="mm-worker"
    ) as pool:
        futures = {pool.submit(_run_guarded, ctx, item): item for item in items}
        for future in as_completed(futures):
            outcome = future.result()
            record(ctx, outcome)
            outcomes.append(outcome)
    return outcomes


def record(ctx: RunContext, outcome: Outcome) -> None:
    ctx.report.append(outcome)
    if ctx.on_outcome is not None:
        ctx.on_outcome(outcome)


def _run_guarded(ctx: RunContext, item: Work) -> Outcome:
    """Run one handler, turning any per-file error into an outcome."""
    file = item.file
    if ctx.stop_event.is_set():
        return _outcome(file, Status.SKIPPED, "interrupted before start")

    start = time.monotonic()
    try:
        outcome = item.handler(file)
    except ConflictError as e:
        logger.warning("Skipping %s: %s", file.relative_path, e)
        outcome = _outcome(file, Status.SKIPPED, str(e), error_kind=e.kind)
    except MusicManagerError as e:
        logger.error("Failed %s: %s", file.relative_path, e)
        outcome = _outcome(file, Status.FAILED, str(e), error_kind=e.kind)
    except OSError as e:
        logger.error("Failed %s: %s", file.relative_path, e)
        outcome = _outcome(file, Status.FAILED, str(e), error_kind=OutputError.kind)
    except Exception as e:
        logger.exception("Error processing %s", file.relative_path)
        outcome = _outcome(file, Status.FAILED, f"unexpected error: {e}", error_kind="unexpected")

    return replace(outcome, elapsed_secs=time.monotonic() - start)


def _outcome(
    file: MediaFile,
    status: Status,
    message: str = "",
    **kwargs: object,
) -> Outcome:
    return Outcome(
        source=file.path,
        relative_path=file.relative_path,
        status=status,
        message=message,
        **kwargs,  # type: ignore[arg-type]
    )


# ---------------------------------------------------------------------------
# compress
# ---------------------------------------------------------------------------


def compress_root(request: OperationRequest) -> Path:
    return request.root / COMPRESSED_DIR


def _compress(ctx: RunContext) -> None:
    root = ctx.request.root
    target_dir = ensure_dir(compress_root(ctx.request))
    files = collect_targets(root, rules_for(ctx.request))
    logger.info("Compressing %d media files in '%s'", len(files), root)

    def handle(file: MediaFile) -> Outcome:
        dest = mirror_path(root, file.path, target_dir, ARCHIVE_EXTENSION, append=True)
        level = compression_level(file.extension)
        logger.info("%s -> %s (mx=%d)", file.relative_path, dest.relative_to(root), level)
        with tempfile.TemporaryDirectory(prefix="mm-compress-") as scratch:
            copy = Path(scratch) / file.path.name
            shutil.copy2(file.path, copy)
            try:
                ctx.caps.transcoder.strip_artwork(copy)
            except CapabilityError as e:
                logger.debug("Could not strip artwork from %s: %s", file.relative_path, e)
            with staged_output(dest) as tmp:
                ctx.caps.archiver.create(copy, tmp, level)
        return _outcome(file, Status.OK, destination=dest)

    outcomes = execute(ctx, (Work(f, handle) for f in files))

    if ctx.request.package:
        _package(ctx, target_dir, outcomes)


def _package(ctx: RunContext, target_dir: Path, outcomes: list[Outcome]) -> None:
    """Bundle every produced archive into one container.

    Raises:
        CapabilityError: If bundling fails.
    """
    if any(o.status is not Status.OK for o in outcomes):
        logger.warning("Not packaging: some files were not compressed")
        return
    archives = sorted(o.destination for o in outcomes if o.destination is not None)
    if not archives:
        logger.warning("Not packaging: no archives were produced")
        return
    container = target_dir / BUNDLE_NAME
    logger.info("Packaging %d archives into '%s'", len(archives), container)
    with staged_output(container) as tmp:
        ctx.caps.archiver.bundle(archives, tmp, base_dir=target_dir)
    logger.info("Package created at '%s'", container)


# ---------------------------------------------------------------------------
# uncompress
# ---------------------------------------------------------------------------


def uncompress_root(source: Path) -> Path:
    """Where archives found under source are restored.

    A directory restores to ``<its parent>/uncompressed``, beside the
    compressed tree. A bundle restores to the same place walking its own
    directory would.
    """
    if source.is_file():
        return source.parent.parent / UNCOMPRESSED_DIR
    return source.parent / UNCOMPRESSED_DIR


def _uncompress(ctx: RunContext) -> None:
    source = ctx.request.root
    target_dir = ensure_dir(uncompress_root(source))
    if source.is_file():
        logger.info("Unpacking '%s'", source)
        scratch = Path(tempfile.mkdtemp(prefix="mm-unpkg-"))
        try:
            ctx.caps.archiver.extract(source, scratch)
            if collect_targets(scratch, rules_for(ctx.request)):
                _uncompress_tree(ctx, scratch, target_dir)
            else:
                _restore_single(ctx, source, scratch, target_dir)
        finally:
            shutil.rmtree(scratch, ignore_errors=True)
    else:
        _uncompress_tree(ctx, source, target_dir)
    logger.info("Files restored to '%s'", target_dir)


def _restore_single(ctx: RunContext, source: Path, extracted: Path, target_dir: Path) -> None:
    # A per-file archive named directly: its contents are the media itself.
    logger.warning("'%s' holds no archives, restoring it as a single archive", source.name)

    def handle(file: MediaFile) -> Outcome:
        moved = move_contents(extracted, target_dir)
        if not moved:
            raise OutputError(f"Archive {file.relative_path} was empty")
        logger.info("%s -> %s/", file.relative_path, target_dir)
        return _outcome(file, Status.OK, destination=target_dir)

    execute(ctx, [Work(media_file(source, source.parent), handle)])


def _uncompress_tree(ctx: RunContext, walk_root: Path, target_dir: Path) -> None:
    files = collect_targets(walk_root, rules_for(ctx.request))
    logger.info("Uncompressing %d archives in '%s'", len(files), walk_root)

    def handle(file: MediaFile) -> Outcome:
        out_dir = ensure_dir(target_dir / file.relative_path.parent)
        logger.info("%s -> %s/", file.relative_path, out_dir)
        with staging_dir(target_dir) as staging:
            ctx.caps.archiver.extract(file.path, staging)
            moved = move_contents(staging, out_dir)
        if not moved:
            raise OutputError(f"Archive {file.relative_path} was empty")
        return _outcome(file, Status.OK, destination=out_dir)

    execute(ctx, (Work(f, handle) for f in files))


# ---------------------------------------------------------------------------
# convert
# ---------------------------------------------------------------------------


def convert_target_dir(request: OperationRequest) -> tuple[Path, Path]:
    """Return (base directory, output directory) for a conversion."""
    root = request.root
    base = root if root.is_dir() else root.parent
    if request.convert.replace:
        return base, base
    return base, base / f"{CONVERTED_PREFIX}{request.convert.codec}"


def _convert(ctx: RunContext) -> None:
    opts = ctx.request.convert
    base, target_dir = convert_target_dir(ctx.request)
    files = collect_targets(ctx.request.root, rules_for(ctx.request))
    ext = codec_extension(opts.codec)
    detail = logging.INFO if opts.verbose else logging.DEBUG

    logger.log(detail, "Conversion options: codec=%s metadata=%s placement=%s",
               opts.codec, opts.metadata_mode, opts.placement)
    logger.log(detail, "Base directory: %s, target directory: %s", base, target_dir)
    logger.info("Converting %d files in '%s' -> *%s", len(files), base, ext)

    codec_params = codec_args(opts.codec)
    metadata_params = metadata_args(opts.metadata_mode)

    # Sources that differ only by extension map to the same destination. A
    # file that already sits at its destination keeps it.
    planned = [(f, map_path(base, f.path, target_dir, ext)) for f in files]
    planned.sort(key=lambda item: item[1] != item[0].path)
    claimed: dict[Path, MediaFile] = {}
    work: list[Work] = []
    for file, dest in planned:
        first = claimed.setdefault(dest, file)
        if first is not file:
            record(ctx, _outcome(
                file,
                Status.SKIPPED,
                f"destination {dest.name} already claimed by {first.relative_path}",
                destination=dest,
                error_kind=ConflictError.kind,
            ))
            continue
        work.append(Work(file, _convert_handler(ctx, base, target_dir, dest, codec_params, metadata_params, detail)))

    execute(ctx, work)
    logger.info("Conversion completed. Output in '%s'", target_dir)


def _convert_handler(
    ctx: RunContext,
    base: Path,
    target_dir: Path,
    dest: Path,
    codec_params: list[str],
    metadata_params: list[str],
    detail: int,
) -> Callable[[MediaFile], Outcome]:
    opts = ctx.request.convert

    def handle(file: MediaFile) -> Outcome:
        logger.log(detail, "Processing '%s'", file.relative_path)
        ctx.caps.prober.probe(file.path)

        if file.extension == codec_extension(opts.codec):
            _resolve_same_format(ctx, file)

        ensure_dir(dest.parent)
        logger.log(detail, "Converting '%s' -> '%s'", file.path, dest)
        with staged_output(dest) as tmp:
            ctx.caps.transcoder.transcode(file.path, tmp, codec_params, metadata_params)

        if opts.replace and dest != file.path:
            # The converted file is in place; only now drop the original.
            file.path.unlink()
        logger.log(detail, "Finished converting '%s'", file.relative_path)
        return _outcome(file, Status.OK, destination=dest)

    return handle


def _resolve_same_format(ctx: RunContext, file: MediaFile) -> None:
    """Decide what to do with a file already in the target format.

    Raises:
        ConflictError: When the file should be skipped or no decision exists.
    """
    codec = ctx.request.convert.codec
    policy = ctx.request.convert.on_conflict
    if policy == CONFLICT_OVERWRITE:
        return
    if policy == CONFLICT_SKIP:
        raise ConflictError(f"already in {codec.upper()} format (on_conflict=skip)")
    if ctx.resolve_conflict is None:
        raise ConflictError(
            f"already in {codec.upper()} format and no conflict policy given"
        )
    with ctx.prompt_lock:
        proceed = ctx.resolve_conflict(file, codec)
    if not proceed:
        raise ConflictError(f"already in {codec.upper()} format, skipped on request")


# ---------------------------------------------------------------------------
# scan
# ---------------------------------------------------------------------------


def _scan(ctx: RunContext) -> None:
    files = collect_targets(ctx.request.root, rules_for(ctx.request))
    logger.info("Scanning %d media files in '%s'", len(files), ctx.request.root)

    def handle(file: MediaFile) -> Outcome:
        try:
            facts = ctx.caps.prober.probe(file.path)
        except ProbeError as e:
            verdict = corrupted(str(e))
        else:
            verdict = classify(facts)
        logger.debug("%s: %s", file.relative_path, verdict.classification.value)
        return _outcome(file, Status.CLASSIFIED, verdict.classification.value, verdict=verdict)

    execute(ctx, (Work(f, handle) for f in files))


# ---------------------------------------------------------------------------
# metadata
# ---------------------------------------------------------------------------


def _metadata(ctx: RunContext) -> None:
    tags = ctx.request.tags
    files = collect_targets(ctx.request.root, rules_for(ctx.request))
    logger.info("Managing metadata for %d files in '%s'", len(files), ctx.request.root)

    def handle(file: MediaFile) -> Outcome:
        ctx.caps.transcoder.set_tags(file.path, tags.removals, tags.additions)
        logger.info("Processed metadata for '%s'", file.relative_path)
        return _outcome(file, Status.OK, destination=file.path)

    execute(ctx, (Work(f, handle) for f in files))


_DISPATCH: dict[Operation, Callable[[RunContext], None]] = {
    Operation.COMPRESS: _compress,
    Operation.UNCOMPRESS: _uncompress,
    Operation.CONVERT: _convert,
    Operation.SCAN: _scan,
    Operation.METADATA: _metadata,
}
