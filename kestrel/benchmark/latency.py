"""
latency measures single-token decode throughput of a Transformer.

Every forward() ends with a logits download, which synchronizes the
stream, so wall-clock time around each call is the full device time of
that token.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field

import numpy as np

from kestrel.config.benchmark import LatencyBenchmarkConfig
from kestrel.console import logger
from kestrel.engine.transformer import Transformer


@dataclass
class LatencyMeasurement:
    """One timed decode run."""

    positions: int
    total_time_ms: float
    time_to_first_token_ms: float
    tokens_per_second: float


@dataclass
class LatencyResult:
    """Result of a latency benchmark."""

    measurements: list[LatencyMeasurement] = field(default_factory=list)

    @property
    def avg_tokens_per_second(self) -> float:
        if not self.measurements:
            return 0.0
        return sum(m.tokens_per_second for m in self.measurements) / len(self.measurements)

    @property
    def avg_time_to_first_token_ms(self) -> float:
        if not self.measurements:
            return 0.0
        return sum(m.time_to_first_token_ms for m in self.measurements) / len(self.measurements)


class LatencyBenchmark:
    """Times Transformer.forward over consecutive positions."""

    def __init__(self, config: LatencyBenchmarkConfig) -> None:
        self.config = config

    def tokens(self, transformer: Transformer) -> list[int]:
        model = transformer.config
        positions = min(self.config.positions, model.seq_len)
        rng = np.random.default_rng(self.config.seed)
        return [int(t) for t in rng.integers(0, model.vocab_size, size=positions)]

    def run(self, transformer: Transformer) -> LatencyResult:
        """Run warmup passes, then the timed passes, and report averages."""
        tokens = self.tokens(transformer)
        for _ in range(self.config.warmup_runs):
            self._decode(transformer, tokens)

        logger.header("Decode latency", f"{len(tokens)} positions")
        result = LatencyResult()
        for run in range(self.config.timed_runs):
            measurement = self._measure(transformer, tokens)
            logger.step(run + 1, self.config.timed_runs, f"{measurement.tokens_per_second:.1f} tokens/s")
            result.measurements.append(measurement)

        logger.metric("tokens/s", result.avg_tokens_per_second)
        logger.metric("first token", result.avg_time_to_first_token_ms, " ms")
        return result

    def _decode(self, transformer: Transformer, tokens: list[int]) -> list[float]:
        transformer.reset()
        times: list[float] = []
        for pos, token in enumerate(tokens):
            start = time.perf_counter()
            transformer.forward(token, pos)
            times.append((time.perf_counter() - start) * 1000)
        return times

    def _measure(self, transformer: Transformer, tokens: list[int]) -> LatencyMeasurement:
        times = self._decode(transformer, tokens)
        total = sum(times)
        return LatencyMeasurement(
            positions=len(tokens),
            total_time_ms=total,
            time_to_first_token_ms=times[0],
            tokens_per_second=len(tokens) / (total / 1000) if total > 0 else 0.0,
        )
