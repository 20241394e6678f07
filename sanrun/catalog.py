# sanrun/catalog.py
"""
Instrumentation catalog: the modes a test suite is run under, and the
policy that turns an exit code plus captured output into an outcome.

The catalog is plain data. A new mode is added by listing it in the
``catalog`` section of the configuration file; neither the runner nor the
orchestrator know mode names.
"""

import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from sanrun.errors import CatalogError
from sanrun.models import Outcome
from sanrun.sanitizers import SanitizerDetector

logger = logging.getLogger("sanrun.catalog")

_detector = SanitizerDetector()

# Exit code Valgrind is told to use when it reports an error
VALGRIND_DEFECT_EXIT_CODE = 99

MODE_NAME_RE = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_.-]*$')

# build_root/baseline holds the shared build, "overall" closes summary.txt
RESERVED_NAMES = ("baseline", "overall")


@dataclass(frozen=True)
class Verdict:
    outcome: Outcome
    reason: str
    finding: Optional[str] = None


def _findings(output: str) -> Optional[str]:
    reports = _detector.detect_multiple(output)
    if not reports:
        return None
    finding = reports[0].summary()
    if len(reports) > 1:
        finding += f" (+{len(reports) - 1} more)"
    return finding


def _describe_exit(exit_code: int) -> str:
    if exit_code < 0:
        return f"killed by signal {-exit_code}"
    return f"exit code {exit_code}"


@dataclass(frozen=True)
class ExitCodeClassifier:
    """
    Default policy: exit code 0 and no failure marker is a pass, a marker or
    any non-zero exit code (signals included) is a failure.
    """
    scan_output: bool = True

    kind = "exit-code"

    def classify(self, exit_code: int, output: str) -> Verdict:
        finding = _findings(output) if self.scan_output else None
        if exit_code != 0:
            return Verdict(Outcome.FAIL, _describe_exit(exit_code), finding)
        if finding:
            return Verdict(Outcome.FAIL, "tool reported a defect", finding)
        return Verdict(Outcome.PASS, "exit code 0")


@dataclass(frozen=True)
class DetectorClassifier(ExitCodeClassifier):
    """
    Policy for modes that run the test binary inside an external detector.

    The detector exits with ``defect_exit_code`` when it found a defect.
    Output naming the detector's own start-up failure means the tool never
    got to check anything, which is an error rather than a failure.
    """
    defect_exit_code: int = VALGRIND_DEFECT_EXIT_CODE
    tool_failure_patterns: Tuple[str, ...] = (
        r'valgrind: failed to start tool',
        r'valgrind: Fatal error',
        r"valgrind: the 'impossible' happened",
        r'valgrind: .*cannot execute',
        r'valgrind: .*No such file or directory',
    )

    kind = "detector"

    def classify(self, exit_code: int, output: str) -> Verdict:
        finding = _findings(output) if self.scan_output else None
        if exit_code == self.defect_exit_code:
            return Verdict(Outcome.FAIL, f"detector reported a defect ({_describe_exit(exit_code)})", finding)
        for pattern in self.tool_failure_patterns:
            match = re.search(pattern, output)
            if match:
                return Verdict(Outcome.ERROR, f"detector could not run: {match.group(0)}")
        if exit_code != 0:
            return Verdict(Outcome.FAIL, f"test failed under detector ({_describe_exit(exit_code)})", finding)
        if finding:
            return Verdict(Outcome.FAIL, "tool reported a defect", finding)
        return Verdict(Outcome.PASS, "exit code 0")


CLASSIFIERS = {
    ExitCodeClassifier.kind: ExitCodeClassifier,
    DetectorClassifier.kind: DetectorClassifier,
}


@dataclass(frozen=True)
class InstrumentationMode:
    name: str
    env: Mapping[str, str] = field(default_factory=dict)
    rustflags: str = ""
    target: Optional[str] = None  # None, "host" or an explicit triple
    requires_rebuild: bool = False
    timeout: Optional[float] = None
    wrapper: Tuple[str, ...] = ()
    test_args: Tuple[str, ...] = ()
    required_tools: Tuple[str, ...] = ()
    fatal: bool = True
    classifier: ExitCodeClassifier = field(default_factory=ExitCodeClassifier)
    description: str = ""

    def __post_init__(self):
        # Freeze the containers as well as the attributes
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))
        object.__setattr__(self, "wrapper", tuple(self.wrapper))
        object.__setattr__(self, "test_args", tuple(self.test_args))
        object.__setattr__(self, "required_tools", tuple(self.required_tools))


DEFAULT_MODES: Tuple[InstrumentationMode, ...] = (
    InstrumentationMode(
        name="native",
        description="Unmodified test binary",
        timeout=1800,
    ),
    InstrumentationMode(
        name="address",
        description="AddressSanitizer build (out-of-bounds, use-after-free, leaks)",
        env={"ASAN_OPTIONS": "detect_leaks=1"},
        rustflags="-Z sanitizer=address",
        target="host",
        requires_rebuild=True,
        timeout=1800,
    ),
    InstrumentationMode(
        name="memory",
        description="MemorySanitizer build (uninitialized and moved-from memory)",
        env={"MSAN_OPTIONS": "halt_on_error=1"},
        rustflags="-Z sanitizer=memory",
        target="host",
        requires_rebuild=True,
        timeout=1800,
    ),
    InstrumentationMode(
        name="valgrind",
        description="Valgrind memcheck (leaks and invalid access)",
        requires_rebuild=True,
        timeout=3600,
        wrapper=(
            "valgrind",
            "--leak-check=full",
            "--show-leak-kinds=all",
            "--track-origins=yes",
            f"--error-exitcode={VALGRIND_DEFECT_EXIT_CODE}",
        ),
        required_tools=("valgrind",),
        classifier=DetectorClassifier(defect_exit_code=VALGRIND_DEFECT_EXIT_CODE),
    ),
)


def _string_tuple(value: Any, key: str, name: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(value.split())
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise CatalogError(f"mode '{name}': '{key}' must be a list of strings")


def classifier_from_dict(data: Optional[Mapping[str, Any]], name: str) -> ExitCodeClassifier:
    if data is None:
        return ExitCodeClassifier()
    if not isinstance(data, Mapping):
        raise CatalogError(f"mode '{name}': 'classifier' must be an object")
    options = dict(data)
    kind = options.pop("kind", ExitCodeClassifier.kind)
    cls = CLASSIFIERS.get(kind)
    if cls is None:
        raise CatalogError(
            f"mode '{name}': unknown classifier '{kind}' (known: {', '.join(sorted(CLASSIFIERS))})"
        )
    if "tool_failure_patterns" in options:
        options["tool_failure_patterns"] = _string_tuple(
            options["tool_failure_patterns"], "tool_failure_patterns", name
        )
    try:
        return cls(**options)
    except TypeError as e:
        raise CatalogError(f"mode '{name}': bad classifier options: {e}")


def mode_from_dict(data: Mapping[str, Any]) -> InstrumentationMode:
    """Build one mode from its configuration-file form."""
    if not isinstance(data, Mapping):
        raise CatalogError(f"catalog entries must be objects, got {type(data).__name__}")
    name = data.get("name")
    if not isinstance(name, str) or not MODE_NAME_RE.match(name):
        raise CatalogError(f"invalid mode name: {name!r}")

    unknown = set(data) - set(InstrumentationMode.__dataclass_fields__)
    if unknown:
        raise CatalogError(f"mode '{name}': unknown keys {sorted(unknown)}")

    env = data.get("env") or {}
    if not isinstance(env, Mapping):
        raise CatalogError(f"mode '{name}': 'env' must be an object")

    target = data.get("target")
    if target is not None and not isinstance(target, str):
        raise CatalogError(f"mode '{name}': 'target' must be a string")

    timeout = data.get("timeout")
    if timeout is not None:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise CatalogError(f"mode '{name}': timeout must be a positive number")

    wrapper = _string_tuple(data.get("wrapper"), "wrapper", name)
    required = data.get("required_tools")
    required_tools = _string_tuple(required, "required_tools", name) if required is not None else wrapper[:1]

    return InstrumentationMode(
        name=name,
        description=str(data.get("description", "")),
        env={str(k): str(v) for k, v in env.items()},
        rustflags=str(data.get("rustflags") or ""),
        target=target,
        requires_rebuild=bool(data.get("requires_rebuild", False)),
        timeout=timeout,
        wrapper=wrapper,
        test_args=_string_tuple(data.get("test_args"), "test_args", name),
        required_tools=required_tools,
        fatal=bool(data.get("fatal", True)),
        classifier=classifier_from_dict(data.get("classifier"), name),
    )


def validate_catalog(modes: Sequence[InstrumentationMode]) -> Tuple[InstrumentationMode, ...]:
    if not modes:
        raise CatalogError("catalog is empty")
    seen = set()
    for mode in modes:
        if mode.name in seen:
            raise CatalogError(f"duplicate mode name: '{mode.name}'")
        if mode.name in RESERVED_NAMES:
            raise CatalogError(f"'{mode.name}' is reserved and cannot be used as a mode name")
        if not mode.requires_rebuild and (mode.rustflags or mode.target):
            # Modes without their own build share the unflagged baseline build
            raise CatalogError(f"mode '{mode.name}': rustflags/target need requires_rebuild")
        seen.add(mode.name)
    return tuple(modes)


def load_catalog(entries: Optional[Iterable[Mapping[str, Any]]] = None) -> Tuple[InstrumentationMode, ...]:
    """
    Return the catalog: the built-in modes, or the modes described by
    ``entries`` (the ``catalog`` list of the configuration) when given.
    """
    if entries is None:
        return validate_catalog(DEFAULT_MODES)
    if isinstance(entries, (str, bytes)) or not isinstance(entries, Iterable):
        raise CatalogError("'catalog' must be a list of mode objects")
    modes = [mode_from_dict(entry) for entry in entries]
    logger.debug(f"Loaded {len(modes)} modes from configuration")
    return validate_catalog(modes)


def select_modes(catalog: Sequence[InstrumentationMode], names: Optional[Iterable[str]] = None) -> List[InstrumentationMode]:
    """Filter the catalog by name, keeping catalog order."""
    if not names:
        return list(catalog)
    wanted = list(dict.fromkeys(names))
    known = {mode.name for mode in catalog}
    missing = [name for name in wanted if name not in known]
    if missing:
        raise CatalogError(
            f"unknown mode(s): {', '.join(missing)} (available: {', '.join(m.name for m in catalog)})"
        )
    return [mode for mode in catalog if mode.name in wanted]
