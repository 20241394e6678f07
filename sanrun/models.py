"""
Result types passed between the runner, the orchestrator and the report writer.

All of them are frozen dataclasses: a result is created once and copied with
``dataclasses.replace`` when a later stage needs to attach information.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple


class Outcome(Enum):
    """Resolved outcome of one mode, and of the whole pipeline"""
    PASS = "PASS"
    FAIL = "FAIL"
    ERROR = "ERROR"
    SKIPPED = "SKIPPED"


@dataclass(frozen=True)
class BuildArtifact:
    """A located test executable and the build configuration behind it"""
    path: Path
    build_dir: Path
    profile: str = "debug"
    rustflags: str = ""
    target: Optional[str] = None


@dataclass(frozen=True)
class ModeResult:
    mode: str
    outcome: Outcome
    exit_code: Optional[int] = None
    output: bytes = b""
    reason: str = ""
    timed_out: bool = False
    duration: float = 0.0
    finding: Optional[str] = None
    artifact: Optional[Path] = None
    log_path: Optional[Path] = None

    def to_dict(self) -> dict:
        """Summary form, without the captured output"""
        return {
            "mode": self.mode,
            "outcome": self.outcome.value,
            "exit_code": self.exit_code,
            "reason": self.reason,
            "timed_out": self.timed_out,
            "duration": round(self.duration, 3),
            "finding": self.finding,
            "artifact": str(self.artifact) if self.artifact else None,
            "log_path": str(self.log_path) if self.log_path else None,
        }


@dataclass(frozen=True)
class PipelineReport:
    results: Tuple[ModeResult, ...]
    outcome: Outcome
    exit_status: int
    started: str = ""
    finished: str = ""
    summary_path: Optional[Path] = None
    modes: Tuple[str, ...] = field(default_factory=tuple)

    def outcomes(self):
        return [(r.mode, r.outcome) for r in self.results]

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "exit_status": self.exit_status,
            "started": self.started,
            "finished": self.finished,
            "modes": list(self.modes),
            "results": [r.to_dict() for r in self.results],
        }
