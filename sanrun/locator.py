# sanrun/locator.py
import fnmatch
import logging
import os
import stat
from pathlib import Path
from typing import List, Optional, Union

from sanrun.errors import AmbiguousArtifact, NoArtifactFound
from sanrun.models import BuildArtifact

# Build outputs that carry an executable bit but are not test binaries
NON_TEST_SUFFIXES = (".d", ".rlib", ".rmeta", ".so", ".dylib", ".dll", ".a", ".o", ".pdb", ".lib", ".exp")


class ArtifactLocator:
    """
    Finds the one test executable a build produced.

    Cargo names test binaries ``<crate>-<hash>`` and leaves older hashes
    behind, so a build tree can hold several candidates. Zero or several
    candidates is an error; the locator never picks one.
    """

    def __init__(self, profile: str = "debug", pattern: str = "*"):
        self.logger = logging.getLogger("sanrun.locator")
        self.profile = profile
        self.pattern = pattern

    def search_dir(self, build_root: Union[str, Path], target: Optional[str] = None) -> Path:
        """Directory holding the test binaries for a build root and target triple."""
        base = Path(build_root)
        if target:
            base = base / target
        base = base / self.profile
        deps = base / "deps"
        return deps if deps.is_dir() else base

    def candidates(self, directory: Path) -> List[Path]:
        found = []
        for entry in sorted(directory.iterdir()):
            name = entry.name
            if name.startswith(".") or name.endswith(NON_TEST_SUFFIXES):
                continue
            if not fnmatch.fnmatch(name, self.pattern):
                continue
            try:
                st = entry.stat()
            except OSError:
                continue
            if not stat.S_ISREG(st.st_mode):
                continue
            if not st.st_mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH):
                continue
            found.append(entry.resolve())
        return found

    def locate(self, build_root: Union[str, Path], target: Optional[str] = None) -> Path:
        """
        Return the absolute path of the single test executable under build_root.

        Raises:
            NoArtifactFound: build root missing or no candidate matches
            AmbiguousArtifact: more than one candidate matches
        """
        root = Path(build_root)
        if not root.is_dir():
            raise NoArtifactFound(f"build output root does not exist: {root}")

        directory = self.search_dir(root, target)
        if not directory.is_dir():
            raise NoArtifactFound(f"no '{self.profile}' output under {root} (looked in {directory})")

        try:
            found = self.candidates(directory)
        except OSError as e:
            raise NoArtifactFound(f"cannot read {directory}: {e}")
        self.logger.debug(f"Candidates in {directory} matching '{self.pattern}': {[p.name for p in found]}")

        if not found:
            raise NoArtifactFound(f"no executable matching '{self.pattern}' in {directory}")
        if len(found) > 1:
            names = [str(p) for p in found]
            raise AmbiguousArtifact(
                f"{len(found)} executables match '{self.pattern}' in {directory}: "
                + ", ".join(os.path.basename(n) for n in names),
                candidates=names,
            )
        return found[0]

    def resolve(self, build_root: Union[str, Path], target: Optional[str] = None,
                rustflags: str = "") -> BuildArtifact:
        path = self.locate(build_root, target)
        self.logger.info(f"Resolved test artifact {path}")
        return BuildArtifact(
            path=path,
            build_dir=Path(build_root).resolve(),
            profile=self.profile,
            rustflags=rustflags,
            target=target,
        )
