"""
sanrun Sanitizer Output Module

Recognises the defect reports printed by the instrumentation tools a test
suite can run under.

Supported tools:
- AddressSanitizer (ASAN) - Out-of-bounds access, use-after-free, double free
- LeakSanitizer (LSAN) - Memory leaks at process exit
- MemorySanitizer (MSAN) - Uninitialized memory reads
- UndefinedBehaviorSanitizer (UBSAN) - Undefined behavior
- Valgrind memcheck - Invalid access, uninitialised values and leaks
"""

from .parser import SanitizerParser, SanitizerReport, SanitizerType
from .detector import SanitizerDetector

__all__ = ['SanitizerParser', 'SanitizerReport', 'SanitizerType', 'SanitizerDetector']
