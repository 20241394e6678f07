# sanrun/build.py
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Optional, Sequence, Union

from sanrun.errors import BuildError


class CargoBuilder:
    """
    Drives the external build step: ``cargo test --no-run`` for one mode.

    The target directory is always passed on the command line, so modes
    with incompatible compiler flags never share build output and the
    process environment is never modified.
    """

    def __init__(self, command: Sequence[str] = ("cargo",), workspace: Union[str, Path] = ".",
                 profile: str = "debug", test_args: Sequence[str] = ("--lib",), fresh: bool = True,
                 timeout: Optional[float] = None, host_triple: Optional[str] = None,
                 rustc: Sequence[str] = ("rustc",)):
        self.logger = logging.getLogger("sanrun.build")
        self.command = list(command)
        self.workspace = Path(os.path.expanduser(str(workspace)))
        self.profile = profile
        self.test_args = list(test_args)
        self.fresh = fresh
        self.timeout = timeout
        self.rustc = list(rustc)
        self._host_triple = host_triple

    def host_triple(self) -> str:
        """Target triple of the host toolchain, as reported by ``rustc -vV``."""
        if self._host_triple:
            return self._host_triple
        try:
            proc = subprocess.run(
                self.rustc + ["-vV"],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=60,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise BuildError(f"could not query host triple from {self.rustc[0]}: {e}")
        text = proc.stdout.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise BuildError(f"{self.rustc[0]} -vV exited with {proc.returncode}", proc.stdout)
        for line in text.splitlines():
            if line.startswith("host:"):
                self._host_triple = line.split(":", 1)[1].strip()
                self.logger.debug(f"Host triple: {self._host_triple}")
                return self._host_triple
        raise BuildError(f"no 'host:' line in {self.rustc[0]} -vV output", proc.stdout)

    def resolve_target(self, target: Optional[str]) -> Optional[str]:
        if target == "host":
            return self.host_triple()
        return target

    def command_for(self, target_dir: Path, triple: Optional[str] = None):
        cmd = self.command + ["test", "--no-run", "--target-dir", str(target_dir)]
        if triple:
            cmd += ["--target", triple]
        if self.profile == "release":
            cmd.append("--release")
        elif self.profile != "debug":
            cmd += ["--profile", self.profile]
        return cmd + self.test_args

    def build(self, target_dir: Union[str, Path], rustflags: str = "", triple: Optional[str] = None,
              fresh: bool = False) -> bytes:
        """
        Build the test binaries into target_dir.

        Returns:
            The captured build output.

        Raises:
            BuildError: cargo could not be started, failed, or timed out
        """
        target_dir = Path(target_dir).resolve()
        try:
            if fresh and self.fresh and target_dir.exists():
                self.logger.debug(f"Removing previous build output {target_dir}")
                shutil.rmtree(target_dir)
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BuildError(f"cannot prepare build directory {target_dir}: {e}")

        env = os.environ.copy()
        if rustflags:
            env["RUSTFLAGS"] = rustflags

        cmd = self.command_for(target_dir, triple)
        self.logger.info(f"Building: {' '.join(cmd)}" + (f" (RUSTFLAGS={rustflags!r})" if rustflags else ""))
        try:
            proc = subprocess.run(
                cmd,
                cwd=str(self.workspace),
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise BuildError(f"build timed out after {self.timeout:g}s", e.output or b"")
        except OSError as e:
            raise BuildError(f"could not start build command {self.command[0]!r}: {e}")

        if proc.returncode != 0:
            self.logger.error(f"Build failed with exit code {proc.returncode}")
            raise BuildError(f"build failed with exit code {proc.returncode}", proc.stdout)
        return proc.stdout
