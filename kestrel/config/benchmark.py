"""Decode latency benchmark settings."""
from __future__ import annotations

from kestrel.config import Config, NonNegativeInt, PositiveInt


class LatencyBenchmarkConfig(Config):
    """Measure single-token decode speed.

    Each timed run resets the transformer and decodes `positions` tokens
    from position 0, so later positions attend over a longer cache.
    """

    positions: PositiveInt = 32
    warmup_runs: NonNegativeInt = 1
    timed_runs: PositiveInt = 3
    seed: int = 0
