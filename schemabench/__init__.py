"""
schemabench: compare physical table designs for the same data and queries.

A scenario loads one generated dataset into several ClickHouse schemas, runs
the same queries against each, and reports latency, server-side counters,
storage, and whether every schema returned the same answer.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
