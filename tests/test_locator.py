"""
Tests for locator.py - ArtifactLocator.
"""

import pytest

from sanrun.errors import AmbiguousArtifact, ArtifactResolutionError, NoArtifactFound
from sanrun.locator import ArtifactLocator

from conftest import HOST_TRIPLE, write_executable


def _binary(directory, name):
    return write_executable(directory / name, "#!/bin/sh\nexit 0\n")


class TestArtifactLocator:
    """Tests for resolving the single test executable of a build."""

    def test_single_candidate(self, build_tree):
        """Test exactly one executable resolves to its absolute path."""
        binary = _binary(build_tree / "debug" / "deps", "mycrate-1a2b3c4d5e6f7081")
        path = ArtifactLocator().locate(build_tree)
        assert path == binary.resolve()
        assert path.is_absolute()

    def test_no_candidate(self, build_tree):
        with pytest.raises(NoArtifactFound):
            ArtifactLocator().locate(build_tree)

    def test_missing_build_root(self, tmp_path):
        with pytest.raises(NoArtifactFound, match="does not exist"):
            ArtifactLocator().locate(tmp_path / "never-built")

    def test_missing_profile_dir(self, tmp_path):
        root = tmp_path / "target"
        root.mkdir()
        with pytest.raises(NoArtifactFound):
            ArtifactLocator(profile="release").locate(root)

    def test_unreadable_search_dir(self, build_tree, monkeypatch):
        """Test a directory that cannot be listed is reported as no artifact."""
        locator = ArtifactLocator()

        def deny(directory):
            raise PermissionError(13, "Permission denied", str(directory))

        monkeypatch.setattr(locator, "candidates", deny)
        with pytest.raises(NoArtifactFound, match="cannot read"):
            locator.locate(build_tree)

    def test_two_candidates_are_ambiguous(self, build_tree):
        """Test a stale binary next to the new one is never silently picked."""
        deps = build_tree / "debug" / "deps"
        _binary(deps, "mycrate-1111111111111111")
        _binary(deps, "mycrate-2222222222222222")
        with pytest.raises(AmbiguousArtifact) as excinfo:
            ArtifactLocator().locate(build_tree)
        assert len(excinfo.value.candidates) == 2
        assert isinstance(excinfo.value, ArtifactResolutionError)

    def test_non_test_outputs_are_ignored(self, build_tree):
        """Test libraries, dep-info files and plain files are not candidates."""
        deps = build_tree / "debug" / "deps"
        binary = _binary(deps, "mycrate-1a2b3c4d5e6f7081")
        _binary(deps, "libmycrate-1a2b3c4d5e6f7081.so")
        _binary(deps, ".mycrate-1a2b3c4d5e6f7081.tmp")
        (deps / "mycrate-1a2b3c4d5e6f7081.d").write_text("")
        (deps / "libmycrate-1a2b3c4d5e6f7081.rlib").write_text("")
        (deps / "notes-0000").write_text("not executable")
        (deps / "build-script-dir").mkdir()
        assert ArtifactLocator().locate(build_tree) == binary.resolve()

    def test_pattern_narrows_candidates(self, build_tree):
        deps = build_tree / "debug" / "deps"
        binary = _binary(deps, "mycrate-1111111111111111")
        _binary(deps, "othercrate-2222222222222222")
        assert ArtifactLocator(pattern="mycrate-*").locate(build_tree) == binary.resolve()

    def test_profile_dir_without_deps(self, tmp_path):
        """Test the profile directory is searched when there is no deps/."""
        root = tmp_path / "target"
        binary = _binary(root / "debug", "mycrate-1a2b3c4d5e6f7081")
        assert ArtifactLocator().locate(root) == binary.resolve()

    def test_target_triple_dir(self, tmp_path):
        """Test cross/sanitizer builds land under <root>/<triple>/<profile>."""
        root = tmp_path / "target"
        binary = _binary(root / HOST_TRIPLE / "debug" / "deps", "mycrate-1a2b3c4d5e6f7081")
        locator = ArtifactLocator()
        assert locator.locate(root, target=HOST_TRIPLE) == binary.resolve()
        with pytest.raises(NoArtifactFound):
            locator.locate(root)

    def test_resolve_returns_build_artifact(self, build_tree):
        binary = _binary(build_tree / "debug" / "deps", "mycrate-1a2b3c4d5e6f7081")
        artifact = ArtifactLocator().resolve(build_tree, rustflags="-Z sanitizer=memory")
        assert artifact.path == binary.resolve()
        assert artifact.build_dir == build_tree.resolve()
        assert artifact.profile == "debug"
        assert artifact.rustflags == "-Z sanitizer=memory"
        assert artifact.target is None
