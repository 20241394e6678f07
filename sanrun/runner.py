# sanrun/runner.py
import logging
import os
import shutil
import signal
import subprocess
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import psutil

from sanrun.build import CargoBuilder
from sanrun.catalog import InstrumentationMode
from sanrun.errors import ArtifactResolutionError, BuildError, ExecutionTimeout
from sanrun.locator import ArtifactLocator
from sanrun.models import BuildArtifact, ModeResult, Outcome

# Seconds to wait for killed processes to go away
KILL_GRACE = 10.0

BASELINE_DIR = "baseline"


class ModeRunner:
    """
    Runs one instrumentation mode: build (when needed), resolve the test
    binary, execute it under the mode's environment and classify the result.

    Every failure along the way becomes an ERROR result; run() does not raise
    for per-mode problems. The runner never writes report files.
    """

    def __init__(self, builder: CargoBuilder, locator: ArtifactLocator, build_root: Union[str, Path],
                 timeout_overrides: Optional[Dict[str, float]] = None):
        self.logger = logging.getLogger("sanrun.runner")
        self.builder = builder
        self.locator = locator
        self.build_root = Path(build_root)
        self.timeout_overrides = dict(timeout_overrides or {})
        # Shared build for modes without their own flags: built at most once
        self._baseline: Optional[Tuple[Optional[BuildArtifact], Optional[Exception], bytes]] = None

    def effective_timeout(self, mode: InstrumentationMode) -> Optional[float]:
        if mode.name in self.timeout_overrides:
            return self.timeout_overrides[mode.name]
        return mode.timeout

    def prepare(self, mode: InstrumentationMode) -> BuildArtifact:
        """
        Build (if the mode needs its own build) and locate the test binary.

        Raises:
            BuildError, ArtifactResolutionError
        """
        if mode.requires_rebuild:
            triple = self.builder.resolve_target(mode.target)
            build_dir = self.build_root / mode.name
            self.builder.build(build_dir, rustflags=mode.rustflags, triple=triple, fresh=True)
            return self.locator.resolve(build_dir, target=triple, rustflags=mode.rustflags)

        if self._baseline is None:
            build_dir = self.build_root / BASELINE_DIR
            try:
                self.builder.build(build_dir, fresh=True)
                artifact = self.locator.resolve(build_dir)
            except BuildError as e:
                self._baseline = (None, e, e.output)
            except ArtifactResolutionError as e:
                self._baseline = (None, e, b"")
            else:
                self._baseline = (artifact, None, b"")
        else:
            self.logger.debug(f"Reusing baseline build for mode '{mode.name}'")

        artifact, error, _ = self._baseline
        if error is not None:
            raise error
        return artifact

    def command_for(self, mode: InstrumentationMode, artifact: BuildArtifact) -> List[str]:
        return list(mode.wrapper) + [str(artifact.path)] + list(mode.test_args)

    def run(self, mode: InstrumentationMode) -> ModeResult:
        started = time.monotonic()
        self.logger.info(f"Starting mode '{mode.name}'")

        for tool in mode.required_tools:
            if shutil.which(tool) is None:
                return self._error(mode, started, f"required tool '{tool}' not found on PATH")

        try:
            artifact = self.prepare(mode)
        except BuildError as e:
            return self._error(mode, started, str(e), e.output)
        except ArtifactResolutionError as e:
            return self._error(mode, started, str(e))

        command = self.command_for(mode, artifact)
        env = os.environ.copy()
        env.update(mode.env)
        timeout = self.effective_timeout(mode)

        try:
            exit_code, output = self.execute(command, env, timeout)
        except ExecutionTimeout as e:
            self.logger.error(f"Mode '{mode.name}' {e}; process tree killed")
            return ModeResult(
                mode=mode.name,
                outcome=Outcome.ERROR,
                output=e.output,
                reason=str(e),
                timed_out=True,
                duration=time.monotonic() - started,
                artifact=artifact.path,
            )
        except OSError as e:
            return self._error(mode, started, f"could not start {command[0]!r}: {e}", artifact=artifact)

        verdict = mode.classifier.classify(exit_code, output.decode("utf-8", errors="replace"))
        result = ModeResult(
            mode=mode.name,
            outcome=verdict.outcome,
            exit_code=exit_code,
            output=output,
            reason=verdict.reason,
            duration=time.monotonic() - started,
            finding=verdict.finding,
            artifact=artifact.path,
        )
        self.logger.info(f"Mode '{mode.name}' finished: {result.outcome.value} ({result.reason})")
        if result.finding:
            self.logger.warning(f"Mode '{mode.name}': {result.finding}")
        return result

    def execute(self, command: List[str], env: Dict[str, str], timeout: Optional[float]) -> Tuple[int, bytes]:
        """
        Run command with stdout and stderr combined.

        Raises:
            ExecutionTimeout: the process outlived timeout and was killed
            OSError: the process could not be started
        """
        self.logger.debug(f"Executing: {' '.join(command)} (timeout={timeout})")
        proc = subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            env=env,
            start_new_session=True,
        )
        try:
            output, _ = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            output = self._kill_tree(proc)
            raise ExecutionTimeout(timeout, output)
        return proc.returncode, output or b""

    def _kill_tree(self, proc: subprocess.Popen) -> bytes:
        """Kill proc and all of its descendants, reap them, return what was printed."""
        try:
            descendants = psutil.Process(proc.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            descendants = []

        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
        for child in descendants:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                pass
        proc.kill()

        try:
            output, _ = proc.communicate(timeout=KILL_GRACE)
        except subprocess.TimeoutExpired:
            # A descendant outside our reach still holds the pipe open
            self.logger.error(f"Output pipe of pid {proc.pid} still open after kill")
            proc.stdout.close()
            proc.wait()
            output = b""

        _, alive = psutil.wait_procs(descendants, timeout=KILL_GRACE)
        if alive:
            self.logger.error(f"Processes survived kill: {[p.pid for p in alive]}")
        return output or b""

    def _error(self, mode: InstrumentationMode, started: float, reason: str, output: bytes = b"",
               artifact: Optional[BuildArtifact] = None) -> ModeResult:
        self.logger.error(f"Mode '{mode.name}' could not run: {reason}")
        return ModeResult(
            mode=mode.name,
            outcome=Outcome.ERROR,
            output=output,
            reason=reason,
            duration=time.monotonic() - started,
            artifact=artifact.path if artifact else None,
        )
