"""Exception hierarchy.

Only ConfigurationError is fatal. Everything else is raised inside a single
decision cycle and is handled (logged and skipped) by the cycle that raised it.
"""

from __future__ import annotations


class ScalperError(RuntimeError):
    pass


class ConfigurationError(ScalperError):
    """Invalid limits or missing credentials. Raised before any cycle runs."""


class PriceFeedError(ScalperError):
    """Batched price fetch failed; retried on the next cycle."""


class ExecutionError(ScalperError):
    """A quote or swap execution failed at the venue."""


class InsufficientDataError(ScalperError):
    """Not enough candles to run a backtest."""
