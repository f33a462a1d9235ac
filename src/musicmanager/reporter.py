"""Per-file outcomes, the persisted run report, and summary rendering."""

from __future__ import annotations

import json
import threading
from collections import Counter
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from io import StringIO
from pathlib import Path
from types import TracebackType
from typing import IO, Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

from musicmanager import __version__
from musicmanager.classifier import Classification, Verdict


class Status(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"
    CLASSIFIED = "classified"


@dataclass(frozen=True)
class Outcome:
    """What happened to one source file."""

    source: Path
    relative_path: Path
    status: Status
    message: str = ""
    destination: Path | None = None
    verdict: Verdict | None = None
    error_kind: str | None = None
    elapsed_secs: float = 0.0

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "type": "file",
            "source": str(self.source),
            "relative_path": str(self.relative_path),
            "status": self.status.value,
            "message": self.message,
            "destination": str(self.destination) if self.destination else None,
            "error_kind": self.error_kind,
            "elapsed_secs": round(self.elapsed_secs, 3),
        }
        if self.verdict is not None:
            record["verdict"] = {
                "classification": self.verdict.classification.value,
                "detail": self.verdict.detail,
                "expected_bytes": self.verdict.expected_bytes,
                "threshold_bytes": self.verdict.threshold_bytes,
                "facts": asdict(self.verdict.facts) if self.verdict.facts else None,
            }
        return record


_STATUS_STYLES = {
    Status.OK: "green",
    Status.SKIPPED: "yellow",
    Status.FAILED: "red",
}

_VERDICT_STYLES = {
    Classification.NORMAL: "green",
    Classification.WEIRD: "yellow",
    Classification.CORRUPTED: "red",
}

_VERDICT_PHRASES = {
    Classification.NORMAL: "appears normal",
    Classification.WEIRD: "appears weird",
    Classification.CORRUPTED: "is corrupted or unreadable",
}


def report_path(report_dir: Path, operation: str, now: datetime | None = None) -> Path:
    """Return ``<report_dir>/<operation>_report_<YYYYmmddHHMMSS>.jsonl``."""
    now = now or datetime.now()
    return report_dir / f"{operation}_report_{now:%Y%m%d%H%M%S}.jsonl"


class RunReport:
    """Ordered, append-only record of one run's outcomes.

    Every appended outcome is written and flushed straight away, so a crash
    loses at most the file being processed. Safe to append from several
    threads.
    """

    def __init__(self, operation: str, root: Path, path: Path | None = None) -> None:
        self.operation = operation
        self.root = root
        self.path = path
        self.started_at = datetime.now(timezone.utc)
        self.finished_at: datetime | None = None
        self._entries: list[Outcome] = []
        self._lock = threading.Lock()
        self._stream: IO[str] | None = None

    @classmethod
    def create(cls, report_dir: Path, operation: str, root: Path) -> RunReport:
        """Open a timestamped report file under report_dir."""
        report_dir.mkdir(parents=True, exist_ok=True)
        report = cls(operation, root, report_path(report_dir, operation))
        report.open()
        return report

    def open(self) -> None:
        if self.path is None or self._stream is not None:
            return
        self._stream = self.path.open("a", encoding="utf-8")
        self._write({
            "type": "run",
            "operation": self.operation,
            "root": str(self.root),
            "started_at": self.started_at.isoformat(),
            "version": __version__,
        })

    def _write(self, record: dict[str, Any]) -> None:
        if self._stream is None:
            return
        self._stream.write(json.dumps(record, ensure_ascii=False) + "\n")
        self._stream.flush()

    def append(self, outcome: Outcome) -> None:
        with self._lock:
            self._entries.append(outcome)
            self._write(outcome.to_record())

    @property
    def entries(self) -> list[Outcome]:
        with self._lock:
            return list(self._entries)

    def counts(self) -> dict[str, int]:
        """Number of outcomes per status, every status present."""
        counter = Counter(o.status for o in self.entries)
        return {status.value: counter.get(status, 0) for status in Status}

    def verdict_counts(self) -> dict[str, int]:
        counter = Counter(
            o.verdict.classification for o in self.entries if o.verdict is not None
        )
        return {c.value: counter.get(c, 0) for c in Classification}

    @property
    def failed(self) -> int:
        return self.counts()[Status.FAILED.value]

    def close(self) -> None:
        """Write the summary record and close the report file."""
        with self._lock:
            if self.finished_at is None:
                self.finished_at = datetime.now(timezone.utc)
            if self._stream is None:
                return
            counter = Counter(o.status.value for o in self._entries)
            self._write({
                "type": "summary",
                "finished_at": self.finished_at.isoformat(),
                "total": len(self._entries),
                "counts": {s.value: counter.get(s.value, 0) for s in Status},
            })
            self._stream.close()
            self._stream = None

    def __enter__(self) -> RunReport:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


def render_outcome(outcome: Outcome) -> Text:
    """Console line for one outcome, coloured by verdict or status."""
    if outcome.verdict is not None:
        verdict = outcome.verdict
        return Text(
            f"File '{outcome.source}' {_VERDICT_PHRASES[verdict.classification]}. {verdict.detail}",
            style=_VERDICT_STYLES[verdict.classification],
        )

    line = f"{outcome.status.value.upper():<8} {outcome.relative_path}"
    if outcome.destination is not None:
        line += f"  ->  {outcome.destination}"
    if outcome.message:
        line += f"  ({outcome.message})"
    return Text(line, style=_STATUS_STYLES.get(outcome.status, ""))


def format_summary(report: RunReport) -> str:
    """Render the end-of-run summary with rich tables.

    Returns:
        Formatted string suitable for printing.
    """
    console = Console(file=StringIO(), force_terminal=False, width=100)

    counts = report.counts()
    table = Table(title=f"{report.operation.capitalize()} Summary", show_header=True, header_style="bold")
    table.add_column("Outcome", style="cyan")
    table.add_column("Files", justify="right")
    table.add_row("Total", str(sum(counts.values())))
    for status in Status:
        if status is Status.CLASSIFIED and not counts[status.value]:
            continue
        table.add_row(status.value.capitalize(), str(counts[status.value]))
    console.print(table)

    if counts[Status.CLASSIFIED.value]:
        verdicts = report.verdict_counts()
        verdict_table = Table(title="Verdicts", show_header=True, header_style="bold")
        verdict_table.add_column("Verdict", style="cyan")
        verdict_table.add_column("Files", justify="right")
        for classification in Classification:
            verdict_table.add_row(
                Text(classification.value.capitalize(), style=_VERDICT_STYLES[classification]),
                str(verdicts[classification.value]),
            )
        console.print(verdict_table)

    failures = [o for o in report.entries if o.status is Status.FAILED]
    if failures:
        failure_table = Table(title="Failures", show_header=True, header_style="bold")
        failure_table.add_column("File", style="cyan")
        failure_table.add_column("Kind")
        failure_table.add_column("Message")
        for outcome in failures:
            failure_table.add_row(
                str(outcome.relative_path), outcome.error_kind or "", outcome.message
            )
        console.print(failure_table)

    output = console.file
    assert isinstance(output, StringIO)
    return output.getvalue()
