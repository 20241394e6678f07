# sanrun/orchestrator.py
"""
Sequences the configured instrumentation modes.

State machine::

    IDLE -> RUNNING(mode_0) -> ... -> RUNNING(mode_n-1) -> COMPLETED

Modes run one at a time in catalog order. Each mode produces exactly one
result; modes that never ran (fail-fast or cancellation) are recorded as
SKIPPED so the summary always lists every configured mode.
"""

import logging
import threading
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence

from sanrun.catalog import InstrumentationMode
from sanrun.errors import OrchestratorError
from sanrun.models import ModeResult, Outcome, PipelineReport
from sanrun.report import ReportWriter
from sanrun.runner import ModeRunner

# Process exit statuses
EXIT_PASS = 0
EXIT_FAIL = 1
EXIT_INTERNAL_ERROR = 2

FAILED_OUTCOMES = (Outcome.FAIL, Outcome.ERROR)


class State(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"


def aggregate_outcome(results: Sequence[ModeResult], expected: Sequence[str]) -> Outcome:
    """PASS only when every expected mode has a result and all of them passed."""
    if [r.mode for r in results] != list(expected):
        return Outcome.FAIL
    if all(r.outcome == Outcome.PASS for r in results):
        return Outcome.PASS
    return Outcome.FAIL


class Orchestrator:
    def __init__(self, modes: Sequence[InstrumentationMode], runner: ModeRunner, writer: ReportWriter,
                 fail_fast: bool = False, cancel_event: Optional[threading.Event] = None):
        self.logger = logging.getLogger("sanrun.orchestrator")
        self.modes = list(modes)
        self.runner = runner
        self.writer = writer
        self.fail_fast = fail_fast
        self.cancel_event = cancel_event or threading.Event()
        self.state = State.IDLE
        self.current_mode: Optional[str] = None
        self.report: Optional[PipelineReport] = None

    def cancel(self) -> None:
        """Request a stop; honoured before the next mode starts."""
        self.cancel_event.set()

    def run(self) -> PipelineReport:
        """
        Run every mode and persist the report.

        Raises:
            OrchestratorError: run() was already called
            ReportPersistenceError: a log or the summary could not be written
        """
        if self.state != State.IDLE:
            raise OrchestratorError(f"orchestrator already {self.state.value}")
        if not self.modes:
            raise OrchestratorError("no modes to run")

        started = datetime.now().isoformat(timespec="seconds")
        self.writer.prepare(m.name for m in self.modes)
        self.logger.info(
            f"Running {len(self.modes)} mode(s): {', '.join(m.name for m in self.modes)}"
            f" (fail-fast: {'on' if self.fail_fast else 'off'})"
        )

        results: List[ModeResult] = []
        stop_reason = None
        for index, mode in enumerate(self.modes):
            if stop_reason is None and self.cancel_event.is_set():
                stop_reason = "cancelled"
                self.logger.warning(f"Cancellation requested; skipping {len(self.modes) - index} mode(s)")

            if stop_reason is not None:
                results.append(self._skipped(mode, stop_reason))
                continue

            self.state = State.RUNNING
            self.current_mode = mode.name
            result = self.runner.run(mode)
            result = self.writer.write_mode(result)
            results.append(result)

            if result.outcome in FAILED_OUTCOMES and self.fail_fast and mode.fatal:
                stop_reason = f"skipped after {result.outcome.value} of '{mode.name}'"
                self.logger.warning(f"Fail-fast: mode '{mode.name}' ended with {result.outcome.value}")

        self.state = State.COMPLETED
        self.current_mode = None

        names = tuple(m.name for m in self.modes)
        outcome = aggregate_outcome(results, names)
        report = PipelineReport(
            results=tuple(results),
            outcome=outcome,
            exit_status=EXIT_PASS if outcome == Outcome.PASS else EXIT_FAIL,
            started=started,
            finished=datetime.now().isoformat(timespec="seconds"),
            modes=names,
        )
        summary_path = self.writer.write_summary(report)
        self.report = replace(report, summary_path=summary_path)

        counts = {o: sum(1 for r in results if r.outcome == o) for o in Outcome}
        self.logger.info(
            f"Pipeline {outcome.value}: "
            + ", ".join(f"{counts[o]} {o.value.lower()}" for o in Outcome if counts[o])
        )
        return self.report

    def _skipped(self, mode: InstrumentationMode, reason: str) -> ModeResult:
        self.logger.info(f"Mode '{mode.name}' skipped ({reason})")
        return ModeResult(mode=mode.name, outcome=Outcome.SKIPPED, reason=reason)
