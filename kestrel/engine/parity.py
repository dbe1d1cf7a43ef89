"""Device-versus-host parity check over a token sequence."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from kestrel.console import logger
from kestrel.engine.reference import HostReference
from kestrel.engine.transformer import Transformer


@dataclass
class ParityReport:
    """Max absolute logit difference at each position."""

    tol: float
    max_abs_diff: list[float] = field(default_factory=list)

    @property
    def worst(self) -> float:
        return max(self.max_abs_diff, default=0.0)

    @property
    def ok(self) -> bool:
        return self.worst <= self.tol


def check_parity(
    transformer: Transformer,
    reference: HostReference,
    tokens: Sequence[int],
    *,
    tol: float = 1e-4,
    show: bool = False,
) -> ParityReport:
    """Run both paths from position 0 and compare logits step by step."""
    transformer.reset()
    reference.reset()
    report = ParityReport(tol=tol)
    for pos, token in enumerate(tokens):
        device_logits = transformer.forward(token, pos)
        host_logits = reference.forward(token, pos)
        diff = (device_logits - host_logits).abs().max().item()
        report.max_abs_diff.append(float(diff))

    if show:
        logger.header("Parity", f"{len(tokens)} positions")
        logger.table(
            title="Parity",
            columns=["pos", "token", "max |Δ|"],
            rows=[
                [str(p), str(t), f"{d:.3e}"]
                for p, (t, d) in enumerate(zip(tokens, report.max_abs_diff))
            ],
        )
        if report.ok:
            logger.success(f"parity within {tol:g} (worst {report.worst:.3e})")
        else:
            logger.warning(f"parity exceeded {tol:g} (worst {report.worst:.3e})")
    return report
