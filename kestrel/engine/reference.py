"""Host reference forward pass.

The same recurrence as the device path, computed with ordinary torch
operators on host tensors and a host-side key/value cache. It shares no
code with the kernel set, which is what makes it useful as a parity
baseline for the device and as the expected output in end-to-end tests.
"""
from __future__ import annotations

import math

import torch
import torch.nn.functional as F
from torch import Tensor

from kestrel.config.device import RopeVariant
from kestrel.config.model import ModelConfig
from kestrel.memory.weights import TransformerWeights


def rms_norm(x: Tensor, weight: Tensor, eps: float) -> Tensor:
    """weight * x / sqrt(mean(x^2) + eps)."""
    return weight * x * torch.rsqrt(x.pow(2).mean() + eps)


def rotate(x: Tensor, cos: Tensor, sin: Tensor, n_heads: int, variant: RopeVariant) -> Tensor:
    """Rotate coordinate pairs of every head of a flat [dim] vector."""
    pairs = x.view(n_heads, -1, 2)
    x0, x1 = pairs[..., 0], pairs[..., 1]
    if variant == RopeVariant.REFERENCE:
        y1 = x0 * cos + x1 * cos
    else:
        y1 = x0 * sin + x1 * cos
    return torch.stack([x0 * cos - x1 * sin, y1], dim=-1).reshape(-1)


class HostReference:
    """Runs the decoder on the host, one token at a time."""

    def __init__(
        self,
        config: ModelConfig,
        weights: TransformerWeights,
        *,
        rope: RopeVariant = RopeVariant.ROTATION,
    ) -> None:
        weights.validate(config)
        self.config = config
        self.rope = rope
        self.w = {
            name: torch.as_tensor(getattr(weights, name), dtype=torch.float32)
            for name in (
                "token_embedding", "rms_att", "wq", "wk", "wv", "wo",
                "rms_ffn", "w1", "w2", "w3", "rms_final", "freq_real", "freq_imag",
            )
        }
        self.w["wcls"] = torch.as_tensor(weights.classifier, dtype=torch.float32)
        shape = (config.n_layers, config.seq_len, config.dim)
        self.key_cache = torch.zeros(shape)
        self.value_cache = torch.zeros(shape)

    def reset(self) -> None:
        self.key_cache.zero_()
        self.value_cache.zero_()

    @torch.no_grad()
    def forward(self, token: int, pos: int) -> Tensor:
        """Logits for token at cache position pos."""
        cfg = self.config
        w = self.w
        H, hs, eps = cfg.n_heads, cfg.head_size, cfg.norm_eps
        cos, sin = w["freq_real"][pos], w["freq_imag"][pos]

        x = w["token_embedding"][token].clone()
        for l in range(cfg.n_layers):
            xb = rms_norm(x, w["rms_att"][l], eps)
            q = rotate(w["wq"][l] @ xb, cos, sin, H, self.rope)
            self.key_cache[l, pos] = rotate(w["wk"][l] @ xb, cos, sin, H, self.rope)
            self.value_cache[l, pos] = w["wv"][l] @ xb

            keys = self.key_cache[l, : pos + 1].view(pos + 1, H, hs)
            values = self.value_cache[l, : pos + 1].view(pos + 1, H, hs)
            scores = torch.einsum("hd,thd->ht", q.view(H, hs), keys) / math.sqrt(hs)
            mixed = torch.einsum("ht,thd->hd", torch.softmax(scores, dim=-1), values)
            x = x + w["wo"][l] @ mixed.reshape(-1)

            xb = rms_norm(x, w["rms_ffn"][l], eps)
            x = x + w["w2"][l] @ (F.silu(w["w1"][l] @ xb) * (w["w3"][l] @ xb))

        x = rms_norm(x, w["rms_final"], eps)
        return w["wcls"] @ x
