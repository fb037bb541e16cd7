"""
Error taxonomy and terminal run status for schemabench.

Configuration and resource errors are raised before the benchmarked service is
touched. Environment errors are recorded against the affected pair or schema
while sibling work continues. Validation mismatches never stop execution; they
only decide the terminal status of a scenario.
"""

from __future__ import annotations

from enum import Enum


class SchemaBenchError(Exception):
    """Base class for all schemabench errors."""


class ConfigurationError(SchemaBenchError):
    """Malformed definition or unresolved reference; raised before any service call."""


class ResourceError(SchemaBenchError):
    """Host resources (disk space) are insufficient for the scenario."""


class BenchmarkEnvironmentError(SchemaBenchError):
    """
    Service unreachable, statement failure, or unexpected disconnect.

    Named to avoid shadowing the builtin ``EnvironmentError`` alias of ``OSError``.
    """

    def __init__(self, message: str, *, statement: str | None = None) -> None:
        super().__init__(message)
        self.statement = statement


class ValidationMismatchError(SchemaBenchError):
    """Schemas disagree on the result of at least one query."""


class RunStatus(str, Enum):
    """Terminal status of a scenario run."""

    SUCCESS = "success"
    ENVIRONMENT_ERROR = "environment_error"
    VALIDATION_FAILED = "validation_failed"
    CONFIGURATION_ERROR = "configuration_error"
    RESOURCE_ERROR = "resource_error"
    CANCELLED = "cancelled"

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self]


_EXIT_CODES = {
    RunStatus.SUCCESS: 0,
    RunStatus.CONFIGURATION_ERROR: 2,
    RunStatus.ENVIRONMENT_ERROR: 3,
    RunStatus.VALIDATION_FAILED: 4,
    RunStatus.RESOURCE_ERROR: 5,
    RunStatus.CANCELLED: 130,
}


__all__ = [
    "SchemaBenchError",
    "ConfigurationError",
    "ResourceError",
    "BenchmarkEnvironmentError",
    "ValidationMismatchError",
    "RunStatus",
]
