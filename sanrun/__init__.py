"""
sanrun: run a native test suite under several memory-correctness tools
and collect one report per tool.
"""

__version__ = "0.1.0"
__author__ = "sanrun Development Team"
