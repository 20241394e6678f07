"""
Pytest configuration and fixtures for sanrun tests.

Test binaries are small Python scripts run through a ``sys.executable``
wrapper, so no compiler or sanitizer runtime is needed.
"""

import logging
import stat
import sys
from pathlib import Path

import pytest

# Add project root to path for all imports
project_root = str(Path(__file__).parent.parent)
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from sanrun.catalog import InstrumentationMode
from sanrun.errors import BuildError
from sanrun.models import ModeResult, Outcome


HOST_TRIPLE = "x86_64-unknown-linux-gnu"

# Behaviour is driven by FAKE_* variables so one artifact serves every mode
ARTIFACT_SOURCE = '''\
import os
import sys
import time

pid_file = os.environ.get("FAKE_PID_FILE")
if pid_file:
    with open(pid_file, "w") as f:
        f.write(str(os.getpid()))
print("running 3 tests")
sys.stdout.flush()
sys.stderr.write(os.environ.get("FAKE_OUTPUT", ""))
sys.stderr.flush()
time.sleep(float(os.environ.get("FAKE_SLEEP", "0")))
sys.exit(int(os.environ.get("FAKE_EXIT", "0")))
'''

FAKE_CARGO_SOURCE = '''\
import json
import os
import shutil
import sys

args = sys.argv[1:]
log = os.environ.get("FAKE_CARGO_LOG")
if log:
    with open(log, "a") as f:
        f.write(json.dumps({"args": args, "rustflags": os.environ.get("RUSTFLAGS"), "cwd": os.getcwd()}) + "\\n")
if os.environ.get("FAKE_CARGO_FAIL"):
    sys.stderr.write("error[E0425]: cannot find value `ctx` in this scope\\n")
    sys.exit(101)
target_dir = args[args.index("--target-dir") + 1]
parts = [target_dir]
if "--target" in args:
    parts.append(args[args.index("--target") + 1])
parts += ["release" if "--release" in args else "debug", "deps"]
deps = os.path.join(*parts)
os.makedirs(deps, exist_ok=True)
binary = os.path.join(deps, "mycrate-5f2c1a9e0b7d3e41")
shutil.copy(os.environ["FAKE_ARTIFACT"], binary)
os.chmod(binary, 0o755)
with open(binary + ".d", "w") as f:
    f.write("")
print("    Finished test [unoptimized + debuginfo] target(s) in 0.01s")
'''


def write_executable(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def python_mode(name: str, **kwargs) -> InstrumentationMode:
    """A mode whose artifact is run by the current interpreter."""
    kwargs.setdefault("wrapper", (sys.executable,))
    kwargs.setdefault("required_tools", ())
    return InstrumentationMode(name=name, **kwargs)


class FakeBuilder:
    """Stands in for CargoBuilder: drops the fake artifact where cargo would."""

    def __init__(self, fail_modes=(), copies=1):
        self.calls = []
        self.fail_dirs = set(fail_modes)
        self.copies = copies

    def resolve_target(self, target):
        if target == "host":
            return HOST_TRIPLE
        return target

    def build(self, target_dir, rustflags="", triple=None, fresh=False):
        target_dir = Path(target_dir)
        self.calls.append({"dir": target_dir, "rustflags": rustflags, "triple": triple, "fresh": fresh})
        if target_dir.name in self.fail_dirs:
            raise BuildError("build failed with exit code 101", b"error[E0425]: cannot find value\n")
        deps = target_dir / triple / "debug" / "deps" if triple else target_dir / "debug" / "deps"
        deps.mkdir(parents=True, exist_ok=True)
        for i in range(self.copies):
            write_executable(deps / f"mycrate-{i:016x}", ARTIFACT_SOURCE)
        return b"Finished\n"


class StubRunner:
    """Returns canned results per mode name and records the order of calls."""

    def __init__(self, outcomes=None):
        self.outcomes = dict(outcomes or {})
        self.calls = []

    def run(self, mode):
        self.calls.append(mode.name)
        outcome = self.outcomes.get(mode.name, Outcome.PASS)
        exit_code = 0 if outcome == Outcome.PASS else 1
        return ModeResult(
            mode=mode.name,
            outcome=outcome,
            exit_code=exit_code,
            output=f"output of {mode.name}\n".encode(),
            reason=f"exit code {exit_code}",
        )


@pytest.fixture(autouse=True)
def sanrun_home(tmp_path, monkeypatch):
    """Keep config and log files out of the real home directory."""
    home = tmp_path / "sanrun_home"
    monkeypatch.setenv("SANRUN_HOME", str(home))
    for var in ("FAKE_EXIT", "FAKE_OUTPUT", "FAKE_SLEEP", "FAKE_PID_FILE", "FAKE_CARGO_FAIL", "FAKE_CARGO_LOG"):
        monkeypatch.delenv(var, raising=False)
    yield home
    # main() attaches handlers bound to this test's captured stdout
    logging.getLogger("sanrun").handlers.clear()


@pytest.fixture
def artifact_source(tmp_path):
    return write_executable(tmp_path / "templates" / "artifact.py", ARTIFACT_SOURCE)


@pytest.fixture
def fake_cargo(tmp_path, artifact_source, monkeypatch):
    """Command list for a cargo stand-in that emits the fake artifact."""
    script = write_executable(tmp_path / "templates" / "fake_cargo.py", FAKE_CARGO_SOURCE)
    monkeypatch.setenv("FAKE_ARTIFACT", str(artifact_source))
    return [sys.executable, str(script)]


@pytest.fixture
def build_tree(tmp_path):
    """An empty cargo-style build root with a debug/deps directory."""
    root = tmp_path / "target"
    (root / "debug" / "deps").mkdir(parents=True)
    return root


@pytest.fixture
def report_root(tmp_path):
    return tmp_path / "report"
