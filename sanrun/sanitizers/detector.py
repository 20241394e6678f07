"""
Sanitizer Detection Module

Looks for tool-specific failure markers in captured test output.
"""

import re
import logging
from typing import List
from .parser import SanitizerParser, SanitizerReport


logger = logging.getLogger("sanrun.sanitizers.detector")


class SanitizerDetector:
    """
    Detects sanitizer and Valgrind errors in captured output.

    A marker means the tool reported a defect, whatever the exit code of the
    process was (a sanitizer built with exitcode=0 still prints its report).
    """

    # Patterns that indicate a defect report
    SANITIZER_PATTERNS = [
        r'ERROR: AddressSanitizer',
        r'ERROR: LeakSanitizer',
        r'(?:WARNING|ERROR): MemorySanitizer',
        r':\d+:\d+: runtime error: ',  # UBSAN
        r'==\d+== ERROR SUMMARY: [1-9]\d* errors?',  # Valgrind
    ]

    # Start of a new report inside a longer log
    REPORT_START = re.compile(
        r'==\d+==\s?(?:ERROR|WARNING): \w+Sanitizer'
        r'|==\d+== (?:Invalid |Conditional jump|Use of uninitialised|Mismatched free'
        r'|Syscall param|Source and destination overlap'
        r'|[\d,]+ (?:\([\d,]+ direct, [\d,]+ indirect\) )?bytes in [\d,]+ blocks are definitely lost)'
    )

    def __init__(self):
        self.logger = logging.getLogger("sanrun.sanitizers.detector")
        self.parser = SanitizerParser()

    def detect_multiple(self, output: str) -> List[SanitizerReport]:
        """
        Detect every report in output.

        Valgrind and sanitizers built with halt_on_error=0 keep going after
        the first defect and print one report per defect.
        """
        reports = []
        if not self.has_marker(output):
            return reports

        for segment in self._split_reports(output):
            report = self.parser.parse(segment)
            if report:
                reports.append(report)

        return reports

    def has_marker(self, output: str) -> bool:
        """Check if output contains a defect marker"""
        for pattern in self.SANITIZER_PATTERNS:
            if re.search(pattern, output):
                return True
        return False

    def _split_reports(self, output: str) -> List[str]:
        segments = []
        current_segment = []

        for line in output.split('\n'):
            if self.REPORT_START.match(line) and current_segment:
                segments.append('\n'.join(current_segment))
                current_segment = []
            current_segment.append(line)

        if current_segment:
            segments.append('\n'.join(current_segment))

        # The Valgrind error summary only closes the log; every Valgrind
        # segment needs it to parse as a Valgrind report.
        summary = re.search(r'==\d+== ERROR SUMMARY: [^\n]*', output)
        if summary:
            line = summary.group(0)
            segments = [
                s + '\n' + line if self.REPORT_START.match(s) and line not in s else s
                for s in segments
            ]

        return segments

