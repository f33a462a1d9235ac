"""CLI entry point for musicmanager (``mm``)."""

from __future__ import annotations

import logging
import signal
import sys
import threading
from pathlib import Path
from types import FrameType
from typing import Any, Callable, Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from rich.prompt import Prompt

from musicmanager import __version__
from musicmanager.capabilities import terminate_running
from musicmanager.config import Operation, OperationRequest, load_config, merge_config
from musicmanager.errors import CapabilityUnavailableError, MusicManagerError
from musicmanager.ffmpeg import FfmpegTranscoder, FfprobeProber
from musicmanager.logging_setup import setup_logging
from musicmanager.pipeline import Capabilities, ConflictResolver, check_capabilities, run_operation
from musicmanager.reporter import Outcome, RunReport, Status, format_summary, render_outcome
from musicmanager.scanner import MediaFile
from musicmanager.sevenzip import SevenZipArchiver

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path("mm.toml")

app = typer.Typer(
    name="mm",
    help="Batch media management: compress, uncompress, convert, scan and tag media trees.",
    no_args_is_help=True,
)

_CONFIG_HELP = "Path to TOML config file (default: ./mm.toml if present)"
_WORKERS_HELP = "Number of files processed in parallel"
_TIMEOUT_HELP = "Timeout in seconds for each external tool invocation"
_REPORT_DIR_HELP = "Directory for the run report and log file"
_LOG_LEVEL_HELP = "Log level (DEBUG, INFO, WARNING, ERROR)"


def _resolve_config_path(config: Optional[str]) -> Optional[Path]:
    """Resolve the config file path, falling back to ./mm.toml when present."""
    if config is not None:
        path = Path(config)
        if not path.exists():
            typer.echo(f"Error: Config file not found: {path}", err=True)
            raise typer.Exit(code=1)
        return path
    if DEFAULT_CONFIG.exists():
        return DEFAULT_CONFIG
    return None


def _build_request(
    operation: Operation,
    path: str,
    config: Optional[str],
    overrides: dict[str, Any],
) -> OperationRequest:
    """Load the TOML config (if any) and merge it with CLI overrides."""
    config_path = _resolve_config_path(config)
    try:
        file_config = load_config(config_path) if config_path is not None else {}
        return merge_config(operation, path, file_config, overrides)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


def _log_file_path(request: OperationRequest) -> Path:
    return request.report_dir / "mm.log"


def _default_capabilities(request: OperationRequest) -> Capabilities:
    return Capabilities(
        archiver=SevenZipArchiver(timeout=request.timeout_secs),
        transcoder=FfmpegTranscoder(timeout=request.timeout_secs),
        prober=FfprobeProber(timeout=request.probe_timeout_secs),
    )


def _prompt_resolver(progress: Progress) -> ConflictResolver:
    """Ask skip/continue with the live progress display paused."""

    def resolve(file: MediaFile, codec: str) -> bool:
        progress.stop()
        try:
            answer = Prompt.ask(
                f"File '{file.relative_path}' is already in {codec.upper()} format. "
                "Skip or continue?",
                choices=["s", "c"],
                default="s",
                console=progress.console,
            )
        finally:
            progress.start()
        return answer == "c"

    return resolve


def _shutdown_handler(stop_event: threading.Event) -> Callable[[int, FrameType | None], None]:
    def handle(signum: int, frame: FrameType | None) -> None:
        if stop_event.is_set():
            # Second signal: stop running tools, then force exit
            signal.signal(signal.SIGINT, signal.SIG_DFL)
            signal.signal(signal.SIGTERM, signal.SIG_DFL)
            terminate_running()
            raise KeyboardInterrupt
        stop_event.set()
        sig_name = signal.Signals(signum).name
        logger.info("Received %s, finishing files in progress (press again to force quit)", sig_name)

    return handle


def _execute(request: OperationRequest) -> None:
    """Run one operation end to end: checks, progress, summary."""
    console = Console()
    setup_logging(request.log_level, _log_file_path(request), console)

    caps = _default_capabilities(request)
    # Fail fast if a required tool is not installed
    try:
        check_capabilities(request, caps)
    except CapabilityUnavailableError as e:
        logger.error("%s", e)
        raise typer.Exit(code=1)

    logger.info("mm v%s, %s '%s'", __version__, request.operation.value, request.root)

    prompt = (
        request.operation is Operation.CONVERT
        and request.convert.on_conflict is None
        and sys.stdin.isatty()
    )
    stop_event = threading.Event()

    try:
        report = RunReport.create(request.report_dir, request.operation.value, request.root)
    except OSError as e:
        logger.error("Cannot create report in %s: %s", request.report_dir, e)
        raise typer.Exit(code=1)

    prev_sigint = signal.getsignal(signal.SIGINT)
    prev_sigterm = signal.getsignal(signal.SIGTERM)
    handler = _shutdown_handler(stop_event)
    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)

    try:
        with report, Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("{task.fields[current_file]}"),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task(
                request.operation.value.capitalize(), total=None, current_file=""
            )
            resolver = _prompt_resolver(progress) if prompt else None

            def on_outcome(outcome: Outcome) -> None:
                progress.update(task, advance=1, current_file=str(outcome.relative_path))
                if outcome.verdict is not None or outcome.status is Status.FAILED:
                    progress.console.print(render_outcome(outcome))

            run_operation(
                request,
                caps,
                report,
                stop_event=stop_event,
                on_outcome=on_outcome,
                resolve_conflict=resolver,
            )
    except (MusicManagerError, OSError) as e:
        logger.error("Run aborted: %s", e)
        raise typer.Exit(code=1)
    finally:
        signal.signal(signal.SIGINT, prev_sigint)
        signal.signal(signal.SIGTERM, prev_sigterm)

    typer.echo(format_summary(report))
    if stop_event.is_set():
        logger.info("Run interrupted; unstarted files are reported as skipped")
    logger.info("Detailed report saved to '%s'", report.path)


def _common_overrides(
    workers: Optional[int],
    timeout: Optional[float],
    report_dir: Optional[str],
    log_level: Optional[str],
) -> dict[str, Any]:
    return {
        "workers": workers,
        "timeout_secs": timeout,
        "report_dir": report_dir,
        "log_level": log_level,
    }


@app.command()
def compress(
    path: str = typer.Argument(..., help="Directory whose media files are compressed"),
    package: bool = typer.Option(False, "--package", help="Package all compressed files into a single container"),
    config: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
    workers: Optional[int] = typer.Option(None, "--workers", help=_WORKERS_HELP),
    timeout: Optional[float] = typer.Option(None, "--timeout", help=_TIMEOUT_HELP),
    report_dir: Optional[str] = typer.Option(None, "--report-dir", help=_REPORT_DIR_HELP),
    log_level: Optional[str] = typer.Option(None, "--log-level", help=_LOG_LEVEL_HELP),
) -> None:
    """Recursively compress supported media files into <path>/compressed."""
    overrides = _common_overrides(workers, timeout, report_dir, log_level)
    if package:
        overrides["package"] = True
    _execute(_build_request(Operation.COMPRESS, path, config, overrides))


@app.command()
def uncompress(
    path: str = typer.Argument(..., help="Directory of archives, or a package file"),
    config: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
    workers: Optional[int] = typer.Option(None, "--workers", help=_WORKERS_HELP),
    timeout: Optional[float] = typer.Option(None, "--timeout", help=_TIMEOUT_HELP),
    report_dir: Optional[str] = typer.Option(None, "--report-dir", help=_REPORT_DIR_HELP),
    log_level: Optional[str] = typer.Option(None, "--log-level", help=_LOG_LEVEL_HELP),
) -> None:
    """Restore archives (or a package file) into a sibling 'uncompressed' directory."""
    overrides = _common_overrides(workers, timeout, report_dir, log_level)
    _execute(_build_request(Operation.UNCOMPRESS, path, config, overrides))


@app.command()
def convert(
    path: str = typer.Argument(..., help="Media file or directory to convert"),
    to: Optional[str] = typer.Option(None, "--to", help="Target codec (default: opus)"),
    keep: bool = typer.Option(False, "--keep", help="Keep originals, writing into converted_<codec>/"),
    replace: bool = typer.Option(False, "--replace", help="Replace the originals with converted files"),
    quiet: bool = typer.Option(False, "--quiet", help="Suppress per-file detail"),
    metadata: Optional[str] = typer.Option(None, "--metadata", help="Metadata handling: keep, drop, or drop:tag,tag"),
    on_conflict: Optional[str] = typer.Option(None, "--on-conflict", help="Files already in the target format: skip or overwrite"),
    config: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
    workers: Optional[int] = typer.Option(None, "--workers", help=_WORKERS_HELP),
    timeout: Optional[float] = typer.Option(None, "--timeout", help=_TIMEOUT_HELP),
    report_dir: Optional[str] = typer.Option(None, "--report-dir", help=_REPORT_DIR_HELP),
    log_level: Optional[str] = typer.Option(None, "--log-level", help=_LOG_LEVEL_HELP),
) -> None:
    """Convert media files to a target codec."""
    if keep and replace:
        typer.echo("Error: --keep and --replace are mutually exclusive", err=True)
        raise typer.Exit(code=1)

    overrides = _common_overrides(workers, timeout, report_dir, log_level)
    overrides.update({
        "codec": to,
        "metadata_mode": metadata,
        "on_conflict": on_conflict,
    })
    if keep:
        overrides["placement"] = "keep"
    if replace:
        overrides["placement"] = "replace"
    if quiet:
        overrides["verbose"] = False
    _execute(_build_request(Operation.CONVERT, path, config, overrides))


@app.command()
def scan(
    path: str = typer.Argument(..., help="Media file or directory to scan"),
    config: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
    workers: Optional[int] = typer.Option(None, "--workers", help=_WORKERS_HELP),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Timeout in seconds for each ffprobe call"),
    report_dir: Optional[str] = typer.Option(None, "--report-dir", help=_REPORT_DIR_HELP),
    log_level: Optional[str] = typer.Option(None, "--log-level", help=_LOG_LEVEL_HELP),
) -> None:
    """Scan media files and classify them as normal, weird or corrupted."""
    overrides = _common_overrides(workers, None, report_dir, log_level)
    overrides["probe_timeout_secs"] = timeout
    _execute(_build_request(Operation.SCAN, path, config, overrides))


@app.command(name="metadata")
def metadata_cmd(
    path: str = typer.Argument(..., help="Media file or directory to edit in place"),
    add: Optional[str] = typer.Option(None, "--add", help='Add or update tags: "key=value,key2=value2"'),
    remove: Optional[str] = typer.Option(None, "--remove", help='Remove tags: "tag,tag"'),
    config: Optional[str] = typer.Option(None, "--config", help=_CONFIG_HELP),
    workers: Optional[int] = typer.Option(None, "--workers", help=_WORKERS_HELP),
    timeout: Optional[float] = typer.Option(None, "--timeout", help=_TIMEOUT_HELP),
    report_dir: Optional[str] = typer.Option(None, "--report-dir", help=_REPORT_DIR_HELP),
    log_level: Optional[str] = typer.Option(None, "--log-level", help=_LOG_LEVEL_HELP),
) -> None:
    """Add, update or remove metadata tags in place."""
    overrides = _common_overrides(workers, timeout, report_dir, log_level)
    overrides.update({"add": add, "remove": remove})
    _execute(_build_request(Operation.METADATA, path, config, overrides))


@app.command()
def version() -> None:
    """Print version information."""
    typer.echo(f"mm {__version__}")


if __name__ == "__main__":
    app()
