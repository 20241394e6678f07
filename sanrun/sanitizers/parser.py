"""
Sanitizer Output Parser

Parses the reports printed by the compiler sanitizers (ASAN, LSAN, MSAN,
UBSAN) and by Valgrind's memcheck tool, and extracts the first defect in a
structured form.
"""

import re
import logging
from typing import Dict, List, Optional
from dataclasses import dataclass, field
from enum import Enum


logger = logging.getLogger("sanrun.sanitizers.parser")


class SanitizerType(Enum):
    """Tools whose reports we understand"""
    ASAN = "AddressSanitizer"
    LSAN = "LeakSanitizer"
    MSAN = "MemorySanitizer"
    UBSAN = "UndefinedBehaviorSanitizer"
    VALGRIND = "Valgrind"
    UNKNOWN = "Unknown"


@dataclass
class SanitizerReport:
    """Structured sanitizer report"""
    sanitizer_type: SanitizerType
    error_type: str
    error_message: str
    crash_address: Optional[str] = None
    access_type: Optional[str] = None  # read/write
    access_size: Optional[int] = None
    error_count: Optional[int] = None  # Valgrind ERROR SUMMARY
    leaked_bytes: Optional[int] = None
    backtrace: List[Dict] = field(default_factory=list)
    raw_output: str = ""

    def summary(self) -> str:
        """One line used as the finding of a mode result"""
        text = f"{self.sanitizer_type.value}: {self.error_type or 'error'}"
        if self.backtrace:
            top = self.backtrace[0]
            location = top.get('function') or '??'
            if top.get('file'):
                location += f" ({top['file']}:{top.get('line') or '?'})"
            text += f" in {location}"
        if self.error_count:
            text += f" [{self.error_count} error(s)]"
        return text


# Valgrind error headers, in the order memcheck commonly prints them
VALGRIND_ERROR_KINDS = [
    (r'Invalid read of size (\d+)', 'invalid_read'),
    (r'Invalid write of size (\d+)', 'invalid_write'),
    (r'Invalid free\(\) / delete / delete\[\] / realloc\(\)', 'invalid_free'),
    (r'Mismatched free\(\) / delete / delete \[\]', 'mismatched_free'),
    (r'Conditional jump or move depends on uninitialised value', 'uninitialised_value'),
    (r'Use of uninitialised value of size (\d+)', 'uninitialised_value'),
    (r'Syscall param .* points to uninitialised byte', 'uninitialised_syscall_param'),
    (r'Source and destination overlap', 'overlapping_copy'),
    (r'are definitely lost in loss record', 'definitely_lost'),
    (r'are possibly lost in loss record', 'possibly_lost'),
]


class SanitizerParser:
    """
    Parser for sanitizer and Valgrind output.

    Only the first report in the given text is parsed; use
    SanitizerDetector.detect_multiple to split a log into reports.
    """

    def __init__(self):
        self.logger = logging.getLogger("sanrun.sanitizers.parser")

    def parse(self, output: str) -> Optional[SanitizerReport]:
        """
        Parse tool output and extract structured information.

        Args:
            output: Raw captured output (stdout and stderr combined)

        Returns:
            SanitizerReport or None if no known report is present
        """
        sanitizer_type = self._detect_sanitizer(output)

        if sanitizer_type == SanitizerType.ASAN:
            return self._parse_asan(output)
        elif sanitizer_type == SanitizerType.LSAN:
            return self._parse_lsan(output)
        elif sanitizer_type == SanitizerType.MSAN:
            return self._parse_msan(output)
        elif sanitizer_type == SanitizerType.UBSAN:
            return self._parse_ubsan(output)
        elif sanitizer_type == SanitizerType.VALGRIND:
            return self._parse_valgrind(output)

        return None

    def _detect_sanitizer(self, output: str) -> SanitizerType:
        """Detect which tool produced the output"""
        if "ERROR: AddressSanitizer" in output:
            return SanitizerType.ASAN
        elif "ERROR: LeakSanitizer" in output:
            return SanitizerType.LSAN
        elif "WARNING: MemorySanitizer" in output or "ERROR: MemorySanitizer" in output:
            return SanitizerType.MSAN
        elif re.search(r':\d+:\d+: runtime error: ', output):
            return SanitizerType.UBSAN
        elif re.search(r'==\d+== ERROR SUMMARY: [1-9]\d* errors?', output):
            return SanitizerType.VALGRIND

        return SanitizerType.UNKNOWN

    def _parse_asan(self, output: str) -> SanitizerReport:
        """
        Parse AddressSanitizer output.

        ==12345==ERROR: AddressSanitizer: heap-use-after-free on address 0x602000000014 at pc ...
        READ of size 4 at 0x602000000014 thread T0
            #0 0x55d0c1 in mlir_rs::context::Context::drop src/context.rs:42:9
        """
        report = SanitizerReport(
            sanitizer_type=SanitizerType.ASAN,
            error_type="",
            error_message="",
            raw_output=output
        )

        error_match = re.search(
            r'ERROR: AddressSanitizer: ([^\s]+)(?:\s+on address (0x[0-9a-fA-F]+))?',
            output
        )
        if error_match:
            report.error_type = error_match.group(1)
            report.crash_address = error_match.group(2)

        access_match = re.search(r'(READ|WRITE) of size (\d+) at (0x[0-9a-fA-F]+)', output)
        if access_match:
            report.access_type = access_match.group(1).lower()
            report.access_size = int(access_match.group(2))

        report.error_message = self._first_line_with(output, 'ERROR: AddressSanitizer:')
        report.backtrace = self._extract_backtrace(output)

        self.logger.debug(f"Parsed ASAN report: {report.error_type} at {report.crash_address}")
        return report

    def _parse_lsan(self, output: str) -> SanitizerReport:
        """
        ==4711==ERROR: LeakSanitizer: detected memory leaks
        Direct leak of 40 byte(s) in 1 object(s) allocated from:
        SUMMARY: AddressSanitizer: 40 byte(s) leaked in 1 allocation(s).
        """
        report = SanitizerReport(
            sanitizer_type=SanitizerType.LSAN,
            error_type="memory_leak",
            error_message=self._first_line_with(output, 'ERROR: LeakSanitizer:'),
            raw_output=output
        )

        leaked = re.search(r'SUMMARY: \w+Sanitizer: (\d+) byte\(s\) leaked', output)
        if leaked:
            report.leaked_bytes = int(leaked.group(1))
        if re.search(r'Direct leak of', output):
            report.error_type = "direct_leak"
        elif re.search(r'Indirect leak of', output):
            report.error_type = "indirect_leak"

        report.backtrace = self._extract_backtrace(output)

        self.logger.debug(f"Parsed LSAN report: {report.error_type}, {report.leaked_bytes} bytes")
        return report

    def _parse_msan(self, output: str) -> SanitizerReport:
        """
        ==12345==WARNING: MemorySanitizer: use-of-uninitialized-value
            #0 0x4008f2 in core::ptr::read ...
        """
        report = SanitizerReport(
            sanitizer_type=SanitizerType.MSAN,
            error_type="use_of_uninitialized_value",
            error_message="",
            raw_output=output
        )

        error_match = re.search(r'(?:WARNING|ERROR): MemorySanitizer: ([^\n]+)', output)
        if error_match:
            report.error_type = error_match.group(1).strip().replace('-', '_')
            report.error_message = f"MemorySanitizer: {error_match.group(1).strip()}"

        report.backtrace = self._extract_backtrace(output)

        self.logger.debug(f"Parsed MSAN report: {report.error_type}")
        return report

    def _parse_ubsan(self, output: str) -> SanitizerReport:
        """
        src/attribute.rs:15:10: runtime error: signed integer overflow: ...
        """
        report = SanitizerReport(
            sanitizer_type=SanitizerType.UBSAN,
            error_type="undefined_behavior",
            error_message="",
            raw_output=output
        )

        error_match = re.search(r'([^\s:]+):(\d+):(\d+): runtime error: (.+)', output)
        if error_match:
            error_msg = error_match.group(4).strip()
            report.error_message = error_msg
            report.backtrace.append({
                'frame': 0,
                'function': '??',
                'file': error_match.group(1),
                'line': int(error_match.group(2)),
                'column': int(error_match.group(3)),
            })

            if 'overflow' in error_msg:
                report.error_type = 'integer_overflow'
            elif 'division by zero' in error_msg:
                report.error_type = 'division_by_zero'
            elif 'null pointer' in error_msg:
                report.error_type = 'null_pointer_dereference'
            elif 'misaligned' in error_msg:
                report.error_type = 'misaligned_access'
            elif 'shift' in error_msg:
                report.error_type = 'invalid_shift'

        frames = self._extract_backtrace(output)
        if frames:
            report.backtrace = frames

        self.logger.debug(f"Parsed UBSAN report: {report.error_type}")
        return report

    def _parse_valgrind(self, output: str) -> SanitizerReport:
        """
        Parse Valgrind memcheck output.

        ==9127== Invalid read of size 8
        ==9127==    at 0x10C1B4: mlir_rs::block::Block::drop (block.rs:31)
        ==9127==    by 0x10B2E0: core::ptr::drop_in_place (mod.rs:514)
        ==9127== ERROR SUMMARY: 1 errors from 1 contexts (suppressed: 0 from 0)
        """
        report = SanitizerReport(
            sanitizer_type=SanitizerType.VALGRIND,
            error_type="memcheck_error",
            error_message="",
            raw_output=output
        )

        summary = re.search(r'==\d+== ERROR SUMMARY: (\d+) errors?', output)
        if summary:
            report.error_count = int(summary.group(1))

        lost = re.search(r'definitely lost: ([\d,]+) bytes', output)
        if lost:
            report.leaked_bytes = int(lost.group(1).replace(',', ''))

        # First error header decides the type; its frames follow it
        lines = output.split('\n')
        for index, line in enumerate(lines):
            body = re.sub(r'^==\d+==\s?', '', line)
            for pattern, kind in VALGRIND_ERROR_KINDS:
                match = re.search(pattern, body)
                if not match:
                    continue
                report.error_type = kind
                report.error_message = body.strip()
                if kind in ('invalid_read', 'invalid_write'):
                    report.access_type = kind.split('_')[1]
                    report.access_size = int(match.group(1))
                report.backtrace = self._extract_valgrind_frames(lines[index + 1:])
                break
            if report.error_message:
                break

        self.logger.debug(f"Parsed Valgrind report: {report.error_type}, {report.error_count} errors")
        return report

    def _first_line_with(self, output: str, needle: str) -> str:
        for line in output.split('\n'):
            if needle in line:
                return line.strip()
        return ""

    def _extract_backtrace(self, output: str) -> List[Dict]:
        """
        Extract the first sanitizer backtrace.

        Format: #N 0xADDRESS in function_name file.rs:line:col
        """
        backtrace = []

        frame_pattern = re.compile(
            r'#(\d+)\s+'                          # Frame number
            r'(?:0x[0-9a-fA-F]+\s+)?'             # Optional address
            r'(?:in\s+)?'                         # Optional "in"
            r'(\S+)'                              # Function name
            r'(?:\s+([^\s:()]+)'                  # File path
            r':(\d+)'                             # Line number
            r'(?::(\d+))?)?'                      # Optional column number
        )

        for line in output.split('\n'):
            match = frame_pattern.match(line.strip())
            if not match:
                if backtrace and not line.strip():
                    break
                continue
            frame_num = int(match.group(1))
            if backtrace and frame_num == 0:
                break
            frame = {
                'frame': frame_num,
                'function': match.group(2),
                'file': match.group(3),
                'line': int(match.group(4)) if match.group(4) else None,
            }
            if match.group(5):
                frame['column'] = int(match.group(5))
            backtrace.append(frame)

        return backtrace

    def _extract_valgrind_frames(self, lines: List[str]) -> List[Dict]:
        """Frames are the 'at'/'by' lines directly after an error header."""
        frames = []
        frame_pattern = re.compile(
            r'==\d+==\s+(?:at|by)\s+0x[0-9a-fA-F]+:\s+'
            r'(.+?)'                              # Function name
            r'(?:\s+\(([^():]+):(\d+)\)|\s+\(in [^)]*\))?$'
        )
        for line in lines:
            match = frame_pattern.match(line.rstrip())
            if not match:
                break
            frames.append({
                'frame': len(frames),
                'function': match.group(1),
                'file': match.group(2),
                'line': int(match.group(3)) if match.group(3) else None,
            })
        return frames

