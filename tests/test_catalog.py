"""
Tests for catalog.py - instrumentation modes and outcome classifiers.
"""

import pytest

from sanrun.catalog import (
    DEFAULT_MODES,
    DetectorClassifier,
    ExitCodeClassifier,
    InstrumentationMode,
    load_catalog,
    mode_from_dict,
    select_modes,
    validate_catalog,
)
from sanrun.errors import CatalogError
from sanrun.models import Outcome


ASAN_REPORT = (
    "==101==ERROR: AddressSanitizer: heap-buffer-overflow on address 0x602000000020\n"
    "    #0 0x4008f2 in mlir_rs::value::Value::owner src/value.rs:12:5\n"
)


class TestExitCodeClassifier:
    """Tests for the default exit-code policy."""

    def test_zero_exit_is_pass(self):
        verdict = ExitCodeClassifier().classify(0, "test result: ok. 3 passed")
        assert verdict.outcome == Outcome.PASS
        assert verdict.finding is None

    @pytest.mark.parametrize("exit_code", [1, 101, 137, -9])
    def test_nonzero_exit_is_fail(self, exit_code):
        """Test any non-zero exit, signals included, is a failure."""
        verdict = ExitCodeClassifier().classify(exit_code, "")
        assert verdict.outcome == Outcome.FAIL

    def test_signal_is_described(self):
        verdict = ExitCodeClassifier().classify(-11, "")
        assert verdict.reason == "killed by signal 11"

    def test_marker_with_zero_exit_is_fail(self):
        """Test a sanitizer report fails the mode even when the process exited 0."""
        verdict = ExitCodeClassifier().classify(0, ASAN_REPORT)
        assert verdict.outcome == Outcome.FAIL
        assert "heap-buffer-overflow" in verdict.finding

    def test_several_reports_are_counted(self):
        """Test the finding names the first report and counts the rest."""
        second = "==101==ERROR: LeakSanitizer: detected memory leaks\n"
        verdict = ExitCodeClassifier().classify(1, ASAN_REPORT + second)
        assert verdict.outcome == Outcome.FAIL
        assert verdict.finding.startswith("AddressSanitizer: heap-buffer-overflow")
        assert verdict.finding.endswith("(+1 more)")

    def test_marker_ignored_without_scan(self):
        verdict = ExitCodeClassifier(scan_output=False).classify(0, ASAN_REPORT)
        assert verdict.outcome == Outcome.PASS


class TestDetectorClassifier:
    """Tests for the external-detector policy."""

    def test_defect_exit_code_is_fail(self):
        verdict = DetectorClassifier(defect_exit_code=99).classify(99, "")
        assert verdict.outcome == Outcome.FAIL
        assert "detector reported a defect" in verdict.reason

    def test_zero_exit_is_pass(self):
        verdict = DetectorClassifier().classify(
            0, "==1== ERROR SUMMARY: 0 errors from 0 contexts (suppressed: 0 from 0)\n"
        )
        assert verdict.outcome == Outcome.PASS

    def test_tool_startup_failure_is_error(self):
        """Test the detector failing to start is an error, not a test failure."""
        output = "valgrind: failed to start tool 'memcheck' for platform 'amd64-linux'\n"
        verdict = DetectorClassifier().classify(1, output)
        assert verdict.outcome == Outcome.ERROR
        assert "failed to start tool" in verdict.reason

    def test_other_nonzero_exit_is_fail(self):
        verdict = DetectorClassifier().classify(101, "test tests::drop ... FAILED\n")
        assert verdict.outcome == Outcome.FAIL
        assert "exit code 101" in verdict.reason


class TestInstrumentationMode:
    """Tests for InstrumentationMode."""

    def test_mode_is_immutable(self):
        mode = InstrumentationMode(name="native", env={"A": "1"})
        with pytest.raises(Exception):
            mode.name = "other"
        with pytest.raises(TypeError):
            mode.env["A"] = "2"

    def test_sequences_are_tuples(self):
        mode = InstrumentationMode(name="wrapped", wrapper=["valgrind", "-q"], test_args=["--nocapture"])
        assert mode.wrapper == ("valgrind", "-q")
        assert mode.test_args == ("--nocapture",)

    def test_default_catalog(self):
        """Test the built-in catalog order and per-mode settings."""
        assert [m.name for m in DEFAULT_MODES] == ["native", "address", "memory", "valgrind"]
        native, address, memory, valgrind = DEFAULT_MODES
        assert not native.requires_rebuild
        assert address.rustflags == "-Z sanitizer=address"
        assert address.env["ASAN_OPTIONS"] == "detect_leaks=1"
        assert memory.rustflags == "-Z sanitizer=memory"
        assert valgrind.wrapper[0] == "valgrind"
        assert "--error-exitcode=99" in valgrind.wrapper
        assert isinstance(valgrind.classifier, DetectorClassifier)
        assert all(m.timeout for m in DEFAULT_MODES)


class TestModeFromDict:
    """Tests for building modes from configuration entries."""

    def test_minimal_entry(self):
        mode = mode_from_dict({"name": "native"})
        assert mode.name == "native"
        assert mode.env == {}
        assert mode.timeout is None
        assert mode.fatal is True
        assert isinstance(mode.classifier, ExitCodeClassifier)

    def test_full_entry(self):
        mode = mode_from_dict({
            "name": "valgrind",
            "requires_rebuild": True,
            "timeout": 600,
            "wrapper": ["valgrind", "--error-exitcode=77"],
            "env": {"RUST_BACKTRACE": 1},
            "fatal": False,
            "classifier": {"kind": "detector", "defect_exit_code": 77},
        })
        assert mode.env == {"RUST_BACKTRACE": "1"}
        assert mode.required_tools == ("valgrind",)
        assert mode.fatal is False
        assert mode.classifier.defect_exit_code == 77

    def test_wrapper_string_is_split(self):
        mode = mode_from_dict({"name": "wrapped", "wrapper": "valgrind -q", "required_tools": []})
        assert mode.wrapper == ("valgrind", "-q")
        assert mode.required_tools == ()

    @pytest.mark.parametrize("entry", [
        {"name": ""},
        {"name": "has space"},
        {"name": "native", "colour": "red"},
        {"name": "native", "timeout": 0},
        {"name": "native", "timeout": True},
        {"name": "native", "env": ["A=1"]},
        {"name": "native", "target": 42},
        {"name": "native", "wrapper": [1, 2]},
        {"name": "native", "classifier": {"kind": "oracle"}},
        {"name": "native", "classifier": {"kind": "detector", "threshold": 3}},
        "native",
    ])
    def test_invalid_entries(self, entry):
        with pytest.raises(CatalogError):
            mode_from_dict(entry)


class TestCatalogValidation:
    """Tests for validate_catalog, load_catalog and select_modes."""

    def test_empty_catalog(self):
        with pytest.raises(CatalogError, match="empty"):
            validate_catalog([])

    def test_duplicate_names(self):
        with pytest.raises(CatalogError, match="duplicate"):
            validate_catalog([InstrumentationMode(name="a"), InstrumentationMode(name="a")])

    @pytest.mark.parametrize("name", ["baseline", "overall"])
    def test_reserved_names(self, name):
        with pytest.raises(CatalogError, match="reserved"):
            validate_catalog([InstrumentationMode(name=name)])

    def test_flags_require_rebuild(self):
        with pytest.raises(CatalogError, match="requires_rebuild"):
            validate_catalog([InstrumentationMode(name="address", rustflags="-Z sanitizer=address")])

    def test_load_default_catalog(self):
        assert load_catalog() == DEFAULT_MODES

    def test_load_custom_catalog(self):
        catalog = load_catalog([{"name": "first"}, {"name": "second", "requires_rebuild": True}])
        assert [m.name for m in catalog] == ["first", "second"]

    def test_load_catalog_rejects_non_list(self):
        with pytest.raises(CatalogError):
            load_catalog("native")

    def test_select_all(self):
        assert select_modes(DEFAULT_MODES) == list(DEFAULT_MODES)

    def test_select_keeps_catalog_order(self):
        """Test selection order follows the catalog, not the request."""
        selected = select_modes(DEFAULT_MODES, ["valgrind", "native", "valgrind"])
        assert [m.name for m in selected] == ["native", "valgrind"]

    def test_select_unknown_mode(self):
        with pytest.raises(CatalogError, match="thread"):
            select_modes(DEFAULT_MODES, ["native", "thread"])
