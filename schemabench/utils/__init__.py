"""
Utilities package for schemabench.

Exports shared helpers for logging and client-side profiling. Keep this
package free of benchmark logic.
"""

from schemabench.utils.logging import configure_logging, get_logger
from schemabench.utils.profiler import ProfileStats, host_snapshot, profile_block

__all__ = [
    "configure_logging",
    "get_logger",
    "ProfileStats",
    "host_snapshot",
    "profile_block",
]
