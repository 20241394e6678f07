"""
Report Writer

Persists one log per executed mode and an aggregate summary under a report
root:

    <root>/
    ├── native.log        # header + raw captured output of the mode
    ├── address.log
    ├── ...
    ├── summary.txt       # one "<mode>\t<OUTCOME>\t<detail>" line per mode
    └── summary.json      # the same, machine form
"""

import json
import logging
import os
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from sanrun.errors import ReportPersistenceError
from sanrun.models import ModeResult, Outcome, PipelineReport

SUMMARY_TEXT = "summary.txt"
SUMMARY_JSON = "summary.json"
OVERALL_KEY = "overall"

OUTCOME_STYLES = {
    Outcome.PASS: "bold green",
    Outcome.FAIL: "bold red",
    Outcome.ERROR: "bold magenta",
    Outcome.SKIPPED: "yellow",
}


def _one_line(text: str) -> str:
    return " ".join(str(text).split())


class ReportWriter:
    def __init__(self, report_root: Union[str, Path]):
        self.logger = logging.getLogger("sanrun.report")
        self.root = Path(os.path.expanduser(str(report_root)))
        self._written = set()

    def log_path(self, mode: str) -> Path:
        return self.root / f"{mode}.log"

    def prepare(self, modes: Iterable[str] = ()) -> None:
        """
        Create the report root and drop the summary and the logs of modes
        about to run, as left by a previous invocation. Other files in the
        root are not touched.
        """
        owned = [SUMMARY_TEXT, SUMMARY_JSON] + [self.log_path(mode).name for mode in modes]
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            for name in owned:
                entry = self.root / name
                if entry.is_file():
                    entry.unlink()
        except OSError as e:
            raise ReportPersistenceError(f"cannot prepare report root {self.root}: {e}")
        self._written.clear()
        self.logger.debug(f"Report root ready: {self.root}")

    def _atomic_write(self, path: Path, data: bytes) -> None:
        tmp_path = path.with_name(f".{path.name}.{os.getpid()}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            try:
                tmp_path.unlink()
            except OSError:
                pass
            raise ReportPersistenceError(f"cannot write {path}: {e}")

    def write_mode(self, result: ModeResult) -> ModeResult:
        """
        Persist the captured output of one mode.

        Returns:
            A copy of result carrying the log path.

        Raises:
            ReportPersistenceError: the log could not be written, or this
                mode was already written during this invocation
        """
        if result.mode in self._written:
            raise ReportPersistenceError(f"log for mode '{result.mode}' already written in this run")

        path = self.log_path(result.mode)
        header = [
            f"mode: {result.mode}",
            f"outcome: {result.outcome.value}",
            f"exit_code: {result.exit_code if result.exit_code is not None else '-'}",
            f"reason: {_one_line(result.reason)}",
        ]
        if result.timed_out:
            header.append("timed_out: yes")
        if result.finding:
            header.append(f"finding: {_one_line(result.finding)}")
        if result.artifact:
            header.append(f"artifact: {result.artifact}")
        header.append("-" * 72)
        data = ("\n".join(header) + "\n").encode("utf-8") + result.output

        self._atomic_write(path, data)
        self._written.add(result.mode)
        self.logger.debug(f"Wrote {path} ({len(result.output)} bytes of output)")
        return replace(result, log_path=path)

    def write_summary(self, report: PipelineReport) -> Path:
        lines = [f"# sanrun summary, finished {report.finished}"]
        for result in report.results:
            detail = _one_line(result.reason)
            if result.finding:
                detail += f" | {_one_line(result.finding)}"
            lines.append(f"{result.mode}\t{result.outcome.value}\t{detail}")
        lines.append(f"{OVERALL_KEY}\t{report.outcome.value}")

        text_path = self.root / SUMMARY_TEXT
        self._atomic_write(text_path, ("\n".join(lines) + "\n").encode("utf-8"))
        self._atomic_write(
            self.root / SUMMARY_JSON,
            (json.dumps(report.to_dict(), indent=2) + "\n").encode("utf-8"),
        )
        self.logger.info(f"Summary written to {text_path}")
        return text_path


def read_summary(path: Union[str, Path]) -> List[Tuple[str, Outcome]]:
    """
    Parse summary.txt back into ordered (mode, outcome) pairs.

    Accepts the report root or the summary file itself.
    """
    path = Path(path)
    if path.is_dir():
        path = path / SUMMARY_TEXT
    pairs = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.rstrip("\n")
            if not line or line.startswith("#"):
                continue
            parts = line.split("\t")
            if parts[0] == OVERALL_KEY:
                continue
            pairs.append((parts[0], Outcome(parts[1])))
    return pairs


def render_summary(report: PipelineReport, console: Optional[Console] = None) -> None:
    """Print the per-mode outcomes as a table."""
    console = console or Console()
    table = Table(title="Sanitizer test summary", show_header=True, header_style="bold magenta")
    table.add_column("Mode", style="cyan")
    table.add_column("Outcome")
    table.add_column("Exit", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("Details")

    for result in report.results:
        style = OUTCOME_STYLES.get(result.outcome, "")
        details = result.reason
        if result.finding:
            details += f"\n{result.finding}"
        table.add_row(
            escape(result.mode),
            f"[{style}]{result.outcome.value}[/]",
            "-" if result.exit_code is None else str(result.exit_code),
            f"{result.duration:.1f}s",
            escape(details),
        )

    console.print(table)
    style = OUTCOME_STYLES.get(report.outcome, "")
    console.print(f"Overall: [{style}]{report.outcome.value}[/]")
    if report.summary_path:
        console.print(f"Report: {escape(str(report.summary_path.parent))}")
