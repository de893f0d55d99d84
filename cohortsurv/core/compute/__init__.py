"""
Shared compute infrastructure for cohortsurv.

Submodules:
    timing: Execution timing utilities
"""

from cohortsurv.core.compute.timing import Timer, timed

__all__ = [
    "Timer",
    "timed",
]
