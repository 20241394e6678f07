# sanrun/errors.py
"""Exception taxonomy shared by the orchestrator components."""

from typing import List, Optional


class SanrunError(Exception):
    """Base class for all sanrun errors."""
    pass


class ArtifactResolutionError(SanrunError):
    """The build tree did not yield exactly one test executable."""
    pass


class NoArtifactFound(ArtifactResolutionError):
    pass


class AmbiguousArtifact(ArtifactResolutionError):
    def __init__(self, message: str, candidates: Optional[List[str]] = None):
        super().__init__(message)
        self.candidates = list(candidates or [])


class BuildError(SanrunError):
    """The external build collaborator failed for a mode."""

    def __init__(self, message: str, output: bytes = b""):
        super().__init__(message)
        self.output = output


class ExecutionTimeout(SanrunError):
    def __init__(self, timeout: float, output: bytes = b""):
        super().__init__(f"timeout after {timeout:g}s")
        self.timeout = timeout
        self.output = output


class ReportPersistenceError(SanrunError):
    pass


class CatalogError(SanrunError):
    pass


class OrchestratorError(SanrunError):
    pass
